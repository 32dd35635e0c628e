from datetime import datetime, timedelta, timezone

import httpx
import pytest

from nexusdash.core.errors import ServiceError
from nexusdash.main import app
from nexusdash.models import GoogleCalendarCredential, get_utc_now
from nexusdash.services.calendar_credential_service import CalendarCredentialService
from nexusdash.services.calendar_service import (
    build_query_window,
    normalize_google_event,
    parse_event_payload,
    parse_google_error_reason,
    read_days_param,
    to_google_event_request,
    to_iso_z,
)
from nexusdash.services.google_calendar import (
    GOOGLE_CALENDAR_SCOPE_EVENTS,
    get_google_http_client,
)

from conftest import HEADERS, OWNER_ID

EVENTS_URL = "/api/calendar/events"
GOOGLE_EVENTS_PATH = "/calendar/v3/calendars/primary/events"


class FakeGoogle:
    """Routes requests by (method, path) to canned httpx responses."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, status_code=200, json=None):
        self.routes[(method, path)] = (status_code, json)

    def calls(self, method, path):
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body = self.routes.get((request.method, request.url.path), (404, {}))
        return httpx.Response(status_code, json=body)


@pytest.fixture
def google(client):
    fake = FakeGoogle()

    async def override():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            yield http

    app.dependency_overrides[get_google_http_client] = override
    return fake


@pytest.fixture
async def credential(db):
    credential = GoogleCalendarCredential(
        user_id=OWNER_ID,
        access_token="access-1",
        refresh_token="refresh-1",
        scope=GOOGLE_CALENDAR_SCOPE_EVENTS,
        expires_at=get_utc_now() + timedelta(hours=1),
    )
    db.add(credential)
    await db.commit()
    return credential


def google_event(event_id="evt-1", summary="Standup"):
    return {
        "id": event_id,
        "summary": summary,
        "start": {"dateTime": "2026-10-19T09:00:00Z"},
        "end": {"dateTime": "2026-10-19T09:15:00Z"},
        "htmlLink": "https://calendar.google.com/event?eid=1",
    }


def test_read_days_param():
    assert read_days_param(None) == 14
    assert read_days_param("abc") == 14
    assert read_days_param("0") == 1
    assert read_days_param("90") == 60
    assert read_days_param("7days") == 7


def test_current_week_window_starts_on_monday():
    now = datetime(2026, 10, 14, 12, 30, tzinfo=timezone.utc)
    window = build_query_window("current-week", "30", now)

    assert window.days == 7
    assert to_iso_z(window.time_min) == "2026-10-12T00:00:00.000Z"
    assert to_iso_z(window.time_max) == "2026-10-19T00:00:00.000Z"


def test_rolling_window():
    now = datetime(2026, 10, 14, 12, 30, tzinfo=timezone.utc)
    window = build_query_window(None, "3", now)

    assert window.range == "rolling-days"
    assert window.time_min == now
    assert window.time_max == now + timedelta(days=3)


def test_normalize_google_event():
    event = normalize_google_event(
        {"id": "e1", "summary": "  ", "start": {"date": "2026-10-20"}, "end": {"date": "2026-10-21"}}
    )
    assert event["summary"] == "(No title)"
    assert event["isAllDay"] is True
    assert event["status"] == "confirmed"
    assert normalize_google_event({"id": "e2", "start": {}}) is None
    assert normalize_google_event("nope") is None


def test_parse_google_error_reason():
    payload = {"error": {"errors": [{"reason": "insufficientPermissions"}]}}
    assert parse_google_error_reason(payload) == "insufficientPermissions"
    assert parse_google_error_reason({"error": "x"}) is None
    assert parse_google_error_reason(None) is None


@pytest.mark.parametrize(
    "body, error",
    [
        (None, "invalid-payload"),
        ({"summary": "", "start": "2026-10-20", "end": "2026-10-20"}, "invalid-summary"),
        ({"summary": "x" * 201, "start": "2026-10-20", "end": "2026-10-20"}, "invalid-summary"),
        ({"summary": "Trip", "start": "", "end": "2026-10-20"}, "invalid-dates"),
        ({"summary": "Trip", "isAllDay": True, "start": "20/10/2026", "end": "2026-10-21"}, "invalid-dates"),
        ({"summary": "Trip", "isAllDay": True, "start": "2026-02-30", "end": "2026-03-01"}, "invalid-dates"),
        ({"summary": "Trip", "isAllDay": True, "start": "2026-10-22", "end": "2026-10-21"}, "invalid-date-order"),
        (
            {"summary": "Call", "start": "2026-10-20T10:00:00Z", "end": "2026-10-20T10:00:00Z"},
            "invalid-date-order",
        ),
    ],
)
def test_parse_event_payload_errors(body, error):
    with pytest.raises(ServiceError) as exc_info:
        parse_event_payload(body)
    assert exc_info.value.status_code == 400
    assert exc_info.value.error == error


def test_all_day_events_send_exclusive_end_date():
    payload = parse_event_payload(
        {"summary": " Offsite ", "isAllDay": True, "start": "2026-10-20", "end": "2026-10-21"}
    )
    assert to_google_event_request(payload) == {
        "summary": "Offsite",
        "start": {"date": "2026-10-20"},
        "end": {"date": "2026-10-22"},
    }


def test_timed_events_are_sent_in_utc():
    payload = parse_event_payload(
        {
            "summary": "Call",
            "start": "2026-10-20T10:00:00+02:00",
            "end": "2026-10-20T11:00:00+02:00",
            "location": "Room 1",
        }
    )
    request = to_google_event_request(payload)
    assert request["start"] == {"dateTime": "2026-10-20T08:00:00.000Z"}
    assert request["end"] == {"dateTime": "2026-10-20T09:00:00.000Z"}
    assert request["location"] == "Room 1"


def test_list_events_requires_connection(client, google):
    response = client.get(EVENTS_URL, headers=HEADERS)
    assert response.status_code == 401
    assert response.json() == {"connected": False, "error": "not-connected"}


async def test_list_events_and_cache(client, google, credential):
    google.on("GET", GOOGLE_EVENTS_PATH, json={"items": [google_event(), {"bogus": True}]})

    response = client.get(EVENTS_URL, params={"range": "rolling-days", "days": "7"}, headers=HEADERS)
    assert response.status_code == 200
    body = response.json()
    assert body["connected"] is True
    assert body["calendarId"] == "primary"
    assert body["days"] == 7
    assert [event["id"] for event in body["events"]] == ["evt-1"]

    [request] = google.calls("GET", GOOGLE_EVENTS_PATH)
    assert request.headers["authorization"] == "Bearer access-1"
    assert request.url.params["singleEvents"] == "true"
    assert request.url.params["orderBy"] == "startTime"

    client.get(EVENTS_URL, params={"range": "rolling-days", "days": "7"}, headers=HEADERS)
    assert len(google.calls("GET", GOOGLE_EVENTS_PATH)) == 1


async def test_creating_an_event_invalidates_cached_listing(client, google, credential):
    google.on("GET", GOOGLE_EVENTS_PATH, json={"items": []})
    google.on("POST", GOOGLE_EVENTS_PATH, json=google_event("evt-2", "Review"))

    client.get(EVENTS_URL, headers=HEADERS)
    response = client.post(
        EVENTS_URL,
        json={"summary": "Review", "start": "2026-10-19T09:00:00Z", "end": "2026-10-19T09:15:00Z"},
        headers=HEADERS,
    )
    assert response.status_code == 201
    assert response.json()["event"]["summary"] == "Review"

    client.get(EVENTS_URL, headers=HEADERS)
    assert len(google.calls("GET", GOOGLE_EVENTS_PATH)) == 2


async def test_expired_token_is_refreshed(client, google, db, session_factory):
    db.add(
        GoogleCalendarCredential(
            user_id=OWNER_ID,
            access_token="stale",
            refresh_token="refresh-1",
            scope=GOOGLE_CALENDAR_SCOPE_EVENTS,
            expires_at=get_utc_now() - timedelta(minutes=5),
        )
    )
    await db.commit()
    google.on("POST", "/token", json={"access_token": "fresh", "expires_in": 3600})
    google.on("GET", GOOGLE_EVENTS_PATH, json={"items": []})

    assert client.get(EVENTS_URL, headers=HEADERS).status_code == 200
    [request] = google.calls("GET", GOOGLE_EVENTS_PATH)
    assert request.headers["authorization"] == "Bearer fresh"

    async with session_factory() as session:
        stored = await CalendarCredentialService.find_credential(OWNER_ID, session)
    assert stored.access_token == "fresh"
    assert stored.refresh_token == "refresh-1"


async def test_failed_refresh_requires_reauthorization(client, google, db):
    db.add(GoogleCalendarCredential(user_id=OWNER_ID, refresh_token="revoked"))
    await db.commit()
    google.on("POST", "/token", status_code=400, json={"error": "invalid_grant"})

    response = client.get(EVENTS_URL, headers=HEADERS)
    assert response.status_code == 401
    assert response.json() == {"connected": False, "error": "reauthorization-required"}


async def test_google_errors_are_mapped(client, google, credential):
    google.on(
        "GET",
        GOOGLE_EVENTS_PATH,
        status_code=403,
        json={"error": {"code": 403, "errors": [{"reason": "insufficientPermissions"}]}},
    )
    response = client.get(EVENTS_URL, headers=HEADERS)
    assert response.status_code == 403
    assert response.json() == {"connected": True, "error": "insufficient-scope"}

    google.on("GET", GOOGLE_EVENTS_PATH, status_code=500, json={"error": {"message": "boom"}})
    response = client.get(EVENTS_URL, params={"range": "current-week"}, headers=HEADERS)
    assert response.status_code == 502
    assert response.json() == {"connected": True, "error": "calendar-fetch-failed"}


async def test_writes_require_write_scope(client, google, db):
    db.add(
        GoogleCalendarCredential(
            user_id=OWNER_ID,
            access_token="access-1",
            refresh_token="refresh-1",
            scope="https://www.googleapis.com/auth/calendar.readonly",
            expires_at=get_utc_now() + timedelta(hours=1),
        )
    )
    await db.commit()

    response = client.delete(f"{EVENTS_URL}/evt-1", headers=HEADERS)
    assert response.status_code == 403
    assert response.json() == {"error": "insufficient-scope"}


async def test_update_and_delete_events(client, google, credential):
    google.on("PATCH", f"{GOOGLE_EVENTS_PATH}/evt-1", json=google_event(summary="Moved"))
    google.on("DELETE", f"{GOOGLE_EVENTS_PATH}/evt-1", status_code=204)

    response = client.patch(
        f"{EVENTS_URL}/evt-1",
        json={"summary": "Moved", "start": "2026-10-19T10:00:00Z", "end": "2026-10-19T10:15:00Z"},
        headers=HEADERS,
    )
    assert response.json()["event"]["summary"] == "Moved"

    assert client.delete(f"{EVENTS_URL}/evt-1", headers=HEADERS).json() == {"ok": True}

    response = client.delete(f"{EVENTS_URL}/missing", headers=HEADERS)
    assert response.status_code == 404
    assert response.json() == {"error": "event-not-found"}


async def test_invalid_event_body_is_rejected(client, google, credential):
    response = client.post(EVENTS_URL, json={"summary": "No dates"}, headers=HEADERS)
    assert response.status_code == 400
    assert response.json() == {"error": "invalid-dates"}
