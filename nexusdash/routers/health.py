from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from nexusdash.core.config import SettingsDep
from nexusdash.core.observability import log_server_error
from nexusdash.dependencies import DbDep
from nexusdash.models import get_utc_now
from nexusdash.services.health_service import HealthService, uptime_seconds

NO_STORE = {"Cache-Control": "no-store"}

router = APIRouter(prefix="/api/health", tags=["health"])


def _timestamp() -> str:
    return get_utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


@router.get("/live")
async def live(request: Request, settings: SettingsDep):
    return JSONResponse(
        {
            "status": "ok",
            "service": settings.service_name,
            "timestamp": _timestamp(),
            "uptimeSeconds": uptime_seconds(),
            "requestId": request.state.request_id,
        },
        headers=NO_STORE,
    )


@router.get("/ready")
async def ready(request: Request, settings: SettingsDep, db: DbDep):
    request_id = request.state.request_id
    body = {"service": settings.service_name, "requestId": request_id}

    try:
        await HealthService.check_database_readiness(db)
    except Exception as e:
        log_server_error("GET /api/health/ready", e, {"requestId": request_id})
        return JSONResponse(
            {
                **body,
                "status": "degraded",
                "timestamp": _timestamp(),
                "checks": {"database": "error"},
                "error": "database-unreachable",
            },
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            headers=NO_STORE,
        )

    return JSONResponse(
        {**body, "status": "ready", "timestamp": _timestamp(), "checks": {"database": "ok"}},
        headers=NO_STORE,
    )
