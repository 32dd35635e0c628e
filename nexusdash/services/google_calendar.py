from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AsyncIterator
from urllib.parse import urlencode

import httpx
from fastapi import Depends
from typing_extensions import Annotated

from nexusdash.core.config import Settings
from nexusdash.models import get_utc_now

GOOGLE_AUTH_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"

GOOGLE_CALENDAR_SCOPE_EVENTS = "https://www.googleapis.com/auth/calendar.events"
GOOGLE_CALENDAR_SCOPE_FULL = "https://www.googleapis.com/auth/calendar"

GOOGLE_OAUTH_STATE_COOKIE = "nexusdash_google_oauth_state"
GOOGLE_OAUTH_RETURN_TO_COOKIE = "nexusdash_google_oauth_return_to"
GOOGLE_OAUTH_ACTOR_COOKIE = "nexusdash_google_oauth_actor"

DEFAULT_RETURN_TO_PATH = "/projects"
TOKEN_EXPIRY_MARGIN_SECONDS = 30


class GoogleOAuthConfigError(Exception):
    """Raised when GOOGLE_CLIENT_ID / SECRET / REDIRECT_URI are not set."""


class GoogleTokenError(Exception):
    """The token endpoint rejected the request or returned garbage."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass
class GoogleOAuthConfig:
    client_id: str
    client_secret: str
    redirect_uri: str


@dataclass
class GoogleTokenResponse:
    access_token: str
    expires_in: int
    refresh_token: str | None = None
    token_type: str | None = None
    scope: str | None = None


def get_oauth_config(settings: Settings) -> GoogleOAuthConfig:
    missing = [
        name.upper()
        for name in ("google_client_id", "google_client_secret", "google_redirect_uri")
        if not getattr(settings, name)
    ]
    if missing:
        raise GoogleOAuthConfigError(
            f"Missing required environment variable: {', '.join(missing)}"
        )

    return GoogleOAuthConfig(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        redirect_uri=settings.google_redirect_uri,
    )


def build_oauth_url(state: str, settings: Settings) -> str:
    config = get_oauth_config(settings)
    params = {
        "client_id": config.client_id,
        "redirect_uri": config.redirect_uri,
        "response_type": "code",
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "scope": GOOGLE_CALENDAR_SCOPE_EVENTS,
        "state": state,
    }
    return f"{GOOGLE_AUTH_ENDPOINT}?{urlencode(params)}"


def parse_token_response(payload) -> GoogleTokenResponse:
    if not isinstance(payload, dict):
        raise GoogleTokenError("invalid-token-response")

    access_token = payload.get("access_token")
    expires_in = payload.get("expires_in")
    if (
        not isinstance(access_token, str)
        or isinstance(expires_in, bool)
        or not isinstance(expires_in, (int, float))
    ):
        raise GoogleTokenError("invalid-token-response")

    def optional_string(key: str) -> str | None:
        value = payload.get(key)
        return value if isinstance(value, str) else None

    return GoogleTokenResponse(
        access_token=access_token,
        expires_in=int(expires_in),
        refresh_token=optional_string("refresh_token"),
        token_type=optional_string("token_type"),
        scope=optional_string("scope"),
    )


async def _post_token_form(client: httpx.AsyncClient, form: dict) -> GoogleTokenResponse:
    response = await client.post(GOOGLE_TOKEN_ENDPOINT, data=form)

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if not response.is_success:
        error_code = payload.get("error") if isinstance(payload, dict) else None
        raise GoogleTokenError(
            error_code if isinstance(error_code, str) else "token-request-failed"
        )

    return parse_token_response(payload)


async def exchange_authorization_code(
    code: str, settings: Settings, client: httpx.AsyncClient
) -> GoogleTokenResponse:
    config = get_oauth_config(settings)
    return await _post_token_form(
        client,
        {
            "code": code,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "redirect_uri": config.redirect_uri,
            "grant_type": "authorization_code",
        },
    )


async def refresh_access_token(
    refresh_token: str, settings: Settings, client: httpx.AsyncClient
) -> GoogleTokenResponse:
    config = get_oauth_config(settings)
    return await _post_token_form(
        client,
        {
            "refresh_token": refresh_token,
            "client_id": config.client_id,
            "client_secret": config.client_secret,
            "grant_type": "refresh_token",
        },
    )


def create_expiry_date(expires_in_seconds: int, now: datetime | None = None) -> datetime:
    base = now or get_utc_now()
    return base + timedelta(seconds=max(0, expires_in_seconds - TOKEN_EXPIRY_MARGIN_SECONDS))


def has_calendar_write_scope(scope: str | None) -> bool:
    if not scope:
        return False
    scopes = scope.split()
    return GOOGLE_CALENDAR_SCOPE_EVENTS in scopes or GOOGLE_CALENDAR_SCOPE_FULL in scopes


def normalize_return_to_path(value: str | None) -> str:
    """Only same-site absolute paths are allowed as post-auth redirects."""
    if not value or not value.startswith("/") or value.startswith("//"):
        return DEFAULT_RETURN_TO_PATH
    return value


async def get_google_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0)) as client:
        yield client


GoogleHttpClientDep = Annotated[httpx.AsyncClient, Depends(get_google_http_client)]
