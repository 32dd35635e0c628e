from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """A failure the HTTP layer renders as {"error": <code>}."""

    def __init__(self, status_code: int, error: str, extra: dict | None = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.extra = extra or {}


def not_found(error: str) -> ServiceError:
    return ServiceError(status.HTTP_404_NOT_FOUND, error)


def bad_request(error: str) -> ServiceError:
    return ServiceError(status.HTTP_400_BAD_REQUEST, error)


async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code, content={**exc.extra, "error": exc.error}
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "invalid-payload", "details": details},
    )
