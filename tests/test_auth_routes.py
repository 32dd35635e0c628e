from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from nexusdash.core.config import Settings, get_settings
from nexusdash.main import app
from nexusdash.services.calendar_credential_service import CalendarCredentialService
from nexusdash.services.google_calendar import (
    GOOGLE_OAUTH_ACTOR_COOKIE,
    GOOGLE_OAUTH_RETURN_TO_COOKIE,
    GOOGLE_OAUTH_STATE_COOKIE,
    GoogleTokenError,
    build_oauth_url,
    create_expiry_date,
    get_google_http_client,
    has_calendar_write_scope,
    normalize_return_to_path,
    parse_token_response,
)
from nexusdash.models import get_utc_now

from conftest import HEADERS, OWNER_ID

CALLBACK_URL = "/api/auth/callback/google"


@pytest.fixture
def token_endpoint(client):
    """Answers token exchanges with whatever the test puts in `reply`."""
    state = {"reply": (200, {}), "forms": []}

    def handler(request: httpx.Request) -> httpx.Response:
        state["forms"].append(parse_qs(request.content.decode()))
        status_code, body = state["reply"]
        return httpx.Response(status_code, json=body)

    async def override():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            yield http

    app.dependency_overrides[get_google_http_client] = override
    return state


def start_auth(client, return_to="/projects/p1"):
    response = client.get(
        "/api/auth/google",
        params={"returnTo": return_to},
        headers=HEADERS,
        follow_redirects=False,
    )
    assert response.status_code == 307
    return response


def redirect_params(response):
    location = urlsplit(response.headers["location"])
    return location.path, {key: values[0] for key, values in parse_qs(location.query).items()}


def test_normalize_return_to_path():
    assert normalize_return_to_path("/projects/p1?tab=calendar") == "/projects/p1?tab=calendar"
    assert normalize_return_to_path("//evil.example.com") == "/projects"
    assert normalize_return_to_path("https://evil.example.com") == "/projects"
    assert normalize_return_to_path(None) == "/projects"


def test_build_oauth_url_requests_offline_access():
    url = urlsplit(build_oauth_url("abc", get_settings()))
    params = parse_qs(url.query)

    assert url.netloc == "accounts.google.com"
    assert params["access_type"] == ["offline"]
    assert params["prompt"] == ["consent"]
    assert params["state"] == ["abc"]
    assert params["scope"] == ["https://www.googleapis.com/auth/calendar.events"]


def test_parse_token_response():
    tokens = parse_token_response({"access_token": "a", "expires_in": 3599.0, "scope": 5})
    assert tokens.expires_in == 3599
    assert tokens.scope is None

    with pytest.raises(GoogleTokenError):
        parse_token_response({"access_token": "a", "expires_in": True})
    with pytest.raises(GoogleTokenError):
        parse_token_response([])


def test_create_expiry_date_keeps_safety_margin():
    now = get_utc_now()
    assert (create_expiry_date(3600, now) - now).total_seconds() == 3570
    assert create_expiry_date(10, now) == now


def test_has_calendar_write_scope():
    assert has_calendar_write_scope("openid https://www.googleapis.com/auth/calendar")
    assert not has_calendar_write_scope("https://www.googleapis.com/auth/calendar.readonly")
    assert not has_calendar_write_scope(None)


def test_start_sets_oauth_cookies(client):
    response = start_auth(client)

    assert response.headers["location"].startswith("https://accounts.google.com/")
    assert client.cookies[GOOGLE_OAUTH_RETURN_TO_COOKIE] == "/projects/p1"
    assert client.cookies[GOOGLE_OAUTH_ACTOR_COOKIE] == OWNER_ID
    state = client.cookies[GOOGLE_OAUTH_STATE_COOKIE]
    assert len(state) == 48
    assert f"state={state}" in response.headers["location"]
    assert "httponly" in response.headers["set-cookie"].lower()


def test_start_without_config_redirects_with_error(client):
    app.dependency_overrides[get_settings] = lambda: Settings(
        app_env="test", google_client_id="", google_client_secret="", google_redirect_uri=""
    )
    response = start_auth(client, "/projects")

    assert redirect_params(response) == ("/projects", {"error": "calendar-config-missing"})


async def test_callback_stores_credential(client, token_endpoint, session_factory):
    token_endpoint["reply"] = (
        200,
        {
            "access_token": "access-1",
            "refresh_token": "refresh-1",
            "expires_in": 3600,
            "scope": "https://www.googleapis.com/auth/calendar.events",
            "token_type": "Bearer",
        },
    )
    start_auth(client)
    state = client.cookies[GOOGLE_OAUTH_STATE_COOKIE]

    response = client.get(
        CALLBACK_URL, params={"state": state, "code": "auth-code"}, follow_redirects=False
    )
    assert redirect_params(response) == ("/projects/p1", {"status": "calendar-connected"})
    assert GOOGLE_OAUTH_STATE_COOKIE not in client.cookies

    [form] = token_endpoint["forms"]
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["auth-code"]

    async with session_factory() as session:
        credential = await CalendarCredentialService.find_credential(OWNER_ID, session)
    assert credential.access_token == "access-1"
    assert credential.refresh_token == "refresh-1"


def test_callback_rejects_state_mismatch(client, token_endpoint):
    start_auth(client)
    response = client.get(
        CALLBACK_URL, params={"state": "forged", "code": "auth-code"}, follow_redirects=False
    )
    assert redirect_params(response) == ("/projects/p1", {"error": "calendar-auth-state-invalid"})
    assert token_endpoint["forms"] == []


def test_callback_reports_cancel_and_missing_code(client, token_endpoint):
    start_auth(client)
    response = client.get(CALLBACK_URL, params={"error": "access_denied"}, follow_redirects=False)
    assert redirect_params(response)[1] == {"error": "calendar-auth-cancelled"}

    start_auth(client)
    state = client.cookies[GOOGLE_OAUTH_STATE_COOKIE]
    response = client.get(CALLBACK_URL, params={"state": state}, follow_redirects=False)
    assert redirect_params(response)[1] == {"error": "calendar-auth-code-missing"}


def test_callback_without_refresh_token_fails(client, token_endpoint):
    token_endpoint["reply"] = (200, {"access_token": "access-1", "expires_in": 3600})
    start_auth(client)
    state = client.cookies[GOOGLE_OAUTH_STATE_COOKIE]

    response = client.get(
        CALLBACK_URL, params={"state": state, "code": "auth-code"}, follow_redirects=False
    )
    assert redirect_params(response)[1] == {"error": "calendar-auth-failed"}


def test_callback_token_exchange_error(client, token_endpoint):
    token_endpoint["reply"] = (400, {"error": "invalid_grant"})
    start_auth(client)
    state = client.cookies[GOOGLE_OAUTH_STATE_COOKIE]

    response = client.get(
        CALLBACK_URL, params={"state": state, "code": "auth-code"}, follow_redirects=False
    )
    assert redirect_params(response)[1] == {"error": "calendar-auth-failed"}
