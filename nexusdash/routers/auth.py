import secrets

import httpx
from fastapi import APIRouter, Query, Request
from fastapi.responses import RedirectResponse

from nexusdash.core.config import Settings, SettingsDep
from nexusdash.core.observability import log_server_error
from nexusdash.dependencies import ActorDep, DbDep
from nexusdash.services.calendar_credential_service import CalendarCredentialService
from nexusdash.services.google_calendar import (
    GOOGLE_OAUTH_ACTOR_COOKIE,
    GOOGLE_OAUTH_RETURN_TO_COOKIE,
    GOOGLE_OAUTH_STATE_COOKIE,
    GoogleHttpClientDep,
    GoogleOAuthConfigError,
    GoogleTokenError,
    build_oauth_url,
    exchange_authorization_code,
    normalize_return_to_path,
)

OAUTH_COOKIE_MAX_AGE_SECONDS = 60 * 10
OAUTH_COOKIES = (
    GOOGLE_OAUTH_STATE_COOKIE,
    GOOGLE_OAUTH_RETURN_TO_COOKIE,
    GOOGLE_OAUTH_ACTOR_COOKIE,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def build_return_url(request: Request, return_to: str, **params: str) -> str:
    url = httpx.URL(str(request.base_url)).join(return_to)
    for key, value in params.items():
        url = url.copy_set_param(key, value)
    return str(url)


def _cookie_options(settings: Settings) -> dict:
    return {"httponly": True, "secure": settings.is_production, "samesite": "lax", "path": "/"}


def redirect_clearing_oauth_cookies(url: str, settings: Settings) -> RedirectResponse:
    response = RedirectResponse(url)
    for name in OAUTH_COOKIES:
        response.delete_cookie(name, **_cookie_options(settings))
    return response


@router.get("/google")
async def start_google_auth(
    request: Request,
    actor_user_id: ActorDep,
    settings: SettingsDep,
    return_to: str | None = Query(default=None, alias="returnTo"),
):
    """Send the user to Google's consent screen."""
    return_path = normalize_return_to_path(return_to)
    state = secrets.token_hex(24)

    try:
        authorization_url = build_oauth_url(state, settings)
    except GoogleOAuthConfigError as e:
        log_server_error("GET /api/auth/google.config", e)
        return RedirectResponse(
            build_return_url(request, return_path, error="calendar-config-missing")
        )

    response = RedirectResponse(authorization_url)
    for name, value in (
        (GOOGLE_OAUTH_STATE_COOKIE, state),
        (GOOGLE_OAUTH_RETURN_TO_COOKIE, return_path),
        (GOOGLE_OAUTH_ACTOR_COOKIE, actor_user_id),
    ):
        response.set_cookie(
            name, value, max_age=OAUTH_COOKIE_MAX_AGE_SECONDS, **_cookie_options(settings)
        )
    return response


@router.get("/callback/google")
async def google_auth_callback(
    request: Request,
    db: DbDep,
    settings: SettingsDep,
    client: GoogleHttpClientDep,
    state: str | None = None,
    code: str | None = None,
    error: str | None = None,
):
    expected_state = request.cookies.get(GOOGLE_OAUTH_STATE_COOKIE)
    actor_user_id = request.cookies.get(GOOGLE_OAUTH_ACTOR_COOKIE)
    return_path = normalize_return_to_path(request.cookies.get(GOOGLE_OAUTH_RETURN_TO_COOKIE))

    def finish(**params: str) -> RedirectResponse:
        return redirect_clearing_oauth_cookies(
            build_return_url(request, return_path, **params), settings
        )

    if error:
        return finish(error="calendar-auth-cancelled")

    if not expected_state or not state or not secrets.compare_digest(expected_state, state):
        return finish(error="calendar-auth-state-invalid")

    if not code:
        return finish(error="calendar-auth-code-missing")

    if not actor_user_id:
        return finish(error="calendar-auth-state-invalid")

    try:
        tokens = await exchange_authorization_code(code, settings, client)
        await CalendarCredentialService.upsert_credential_tokens(actor_user_id, tokens, db)
    except (GoogleTokenError, GoogleOAuthConfigError, httpx.HTTPError, ValueError) as e:
        log_server_error("GET /api/auth/callback/google.tokenExchangeFailed", e)
        return finish(error="calendar-auth-failed")

    return finish(status="calendar-connected")
