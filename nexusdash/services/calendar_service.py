import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from urllib.parse import quote

import httpx
from fastapi import status
from sqlmodel.ext.asyncio.session import AsyncSession

from nexusdash.cache.decorators import async_cached, async_cached_expire
from nexusdash.core.config import Settings
from nexusdash.core.errors import ServiceError
from nexusdash.core.observability import log_server_error
from nexusdash.models import get_utc_now
from nexusdash.services.calendar_credential_service import CalendarCredentialService
from nexusdash.services.google_calendar import (
    GOOGLE_CALENDAR_API,
    TOKEN_EXPIRY_MARGIN_SECONDS,
    GoogleOAuthConfigError,
    GoogleTokenError,
    has_calendar_write_scope,
    refresh_access_token,
)

DEFAULT_CALENDAR_EVENT_DAYS = 14
MIN_CALENDAR_EVENT_DAYS = 1
MAX_CALENDAR_EVENT_DAYS = 60
MAX_SUMMARY_LENGTH = 200

RANGE_CURRENT_WEEK = "current-week"
RANGE_ROLLING_DAYS = "rolling-days"

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_LEADING_INT = re.compile(r"^\s*([-+]?\d+)")


@dataclass
class CalendarContext:
    access_token: str
    calendar_id: str
    scope: str | None


@dataclass
class CalendarWindow:
    range: str
    days: int
    time_min: datetime
    time_max: datetime


@dataclass
class EventPayload:
    summary: str
    start: str
    end: str
    is_all_day: bool
    location: str | None = None
    description: str | None = None


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso_z(value: datetime) -> str:
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def read_days_param(raw_days: str | None) -> int:
    match = _LEADING_INT.match(raw_days if raw_days is not None else "")
    if not match:
        return DEFAULT_CALENDAR_EVENT_DAYS
    return min(max(int(match.group(1)), MIN_CALENDAR_EVENT_DAYS), MAX_CALENDAR_EVENT_DAYS)


def build_query_window(
    raw_range: str | None, raw_days: str | None, now: datetime | None = None
) -> CalendarWindow:
    now = as_utc(now or get_utc_now())

    if raw_range == RANGE_CURRENT_WEEK:
        week_start = datetime.combine(
            now.date() - timedelta(days=now.weekday()), datetime.min.time(), timezone.utc
        )
        return CalendarWindow(
            range=RANGE_CURRENT_WEEK,
            days=7,
            time_min=week_start,
            time_max=week_start + timedelta(days=7),
        )

    days = read_days_param(raw_days)
    return CalendarWindow(
        range=RANGE_ROLLING_DAYS,
        days=days,
        time_min=now,
        time_max=now + timedelta(days=days),
    )


def normalize_google_event(event) -> dict | None:
    if not isinstance(event, dict):
        return None

    start_info = event.get("start") or {}
    end_info = event.get("end") or {}
    start = start_info.get("dateTime") or start_info.get("date")
    end = end_info.get("dateTime") or end_info.get("date")

    if not event.get("id") or not start:
        return None

    return {
        "id": event["id"],
        "summary": (event.get("summary") or "").strip() or "(No title)",
        "start": start,
        "end": end,
        "isAllDay": bool(start_info.get("date") and not start_info.get("dateTime")),
        "location": event.get("location"),
        "description": event.get("description"),
        "htmlLink": event.get("htmlLink"),
        "status": event.get("status") or "confirmed",
    }


def parse_google_error_reason(payload) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if not isinstance(error, dict):
        return None
    errors = error.get("errors")
    if not isinstance(errors, list) or not errors or not isinstance(errors[0], dict):
        return None
    reason = errors[0].get("reason")
    return reason if isinstance(reason, str) else None


def summarize_google_api_error(response: httpx.Response, reason: str | None, payload) -> dict:
    error = payload.get("error") if isinstance(payload, dict) else None
    error = error if isinstance(error, dict) else {}
    code = error.get("code")
    error_status = error.get("status")
    message = error.get("message")

    summary = {
        "status": response.status_code,
        "statusText": response.reason_phrase,
        "reason": reason,
        "errorCode": code if isinstance(code, (str, int)) else None,
        "errorStatus": error_status if isinstance(error_status, str) else None,
        "errorMessage": message[:500] if isinstance(message, str) else None,
    }
    return {key: value for key, value in summary.items() if value is not None}


def _parse_timestamp(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return as_utc(parsed)


def parse_event_payload(raw) -> EventPayload:
    """Validate a create/update body; raises a 400 ServiceError."""
    if not isinstance(raw, dict):
        raise ServiceError(status.HTTP_400_BAD_REQUEST, "invalid-payload")

    def text(key: str) -> str:
        value = raw.get(key)
        return value.strip() if isinstance(value, str) else ""

    summary = text("summary")
    if not 1 <= len(summary) <= MAX_SUMMARY_LENGTH:
        raise ServiceError(status.HTTP_400_BAD_REQUEST, "invalid-summary")

    start, end = text("start"), text("end")
    if not start or not end:
        raise ServiceError(status.HTTP_400_BAD_REQUEST, "invalid-dates")

    is_all_day = bool(raw.get("isAllDay"))
    if is_all_day:
        if not _DATE_ONLY.match(start) or not _DATE_ONLY.match(end):
            raise ServiceError(status.HTTP_400_BAD_REQUEST, "invalid-dates")
        try:
            start_date, end_date = date.fromisoformat(start), date.fromisoformat(end)
        except ValueError:
            raise ServiceError(status.HTTP_400_BAD_REQUEST, "invalid-dates") from None
        if start_date > end_date:
            raise ServiceError(status.HTTP_400_BAD_REQUEST, "invalid-date-order")
    else:
        start_at, end_at = _parse_timestamp(start), _parse_timestamp(end)
        if start_at is None or end_at is None or end_at <= start_at:
            raise ServiceError(status.HTTP_400_BAD_REQUEST, "invalid-date-order")

    return EventPayload(
        summary=summary,
        start=start,
        end=end,
        is_all_day=is_all_day,
        location=text("location") or None,
        description=text("description") or None,
    )


def to_google_event_request(payload: EventPayload) -> dict:
    body = {"summary": payload.summary}
    if payload.location:
        body["location"] = payload.location
    if payload.description:
        body["description"] = payload.description

    if payload.is_all_day:
        # Google treats the all-day end date as exclusive
        end_exclusive = date.fromisoformat(payload.end) + timedelta(days=1)
        body["start"] = {"date": payload.start}
        body["end"] = {"date": end_exclusive.isoformat()}
    else:
        body["start"] = {"dateTime": to_iso_z(_parse_timestamp(payload.start))}
        body["end"] = {"dateTime": to_iso_z(_parse_timestamp(payload.end))}
    return body


def _events_url(calendar_id: str, event_id: str | None = None) -> str:
    url = f"{GOOGLE_CALENDAR_API}/calendars/{quote(calendar_id, safe='')}/events"
    if event_id is not None:
        url = f"{url}/{quote(event_id, safe='')}"
    return url


def _response_json(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return None


def _raise_for_google_write_error(response: httpx.Response, operation: str, scope: str) -> None:
    payload = _response_json(response)
    reason = parse_google_error_reason(payload)

    if response.status_code == 403 and reason == "insufficientPermissions":
        raise ServiceError(status.HTTP_403_FORBIDDEN, "insufficient-scope")
    if response.status_code == 401:
        raise ServiceError(status.HTTP_401_UNAUTHORIZED, "reauthorization-required")
    if response.status_code == 404 and operation != "create":
        raise ServiceError(status.HTTP_404_NOT_FOUND, "event-not-found")

    log_server_error(
        f"{scope}.googleApiError",
        "google-api-error",
        {"googleApi": summarize_google_api_error(response, reason, payload)},
    )
    raise ServiceError(status.HTTP_502_BAD_GATEWAY, f"calendar-{operation}-failed")


def _calendar_cache_key(user_id: str, window: CalendarWindow, *args, **kwargs) -> str:
    return f"calendar:{user_id}:{window.range}:{window.days}"


def _calendar_prefix(user_id: str, *args, **kwargs) -> str:
    return f"calendar:{user_id}:"


class CalendarService:
    @staticmethod
    async def get_authorized_calendar_context(
        user_id: str,
        db: AsyncSession,
        settings: Settings,
        client: httpx.AsyncClient,
    ) -> CalendarContext:
        """Return a usable access token, refreshing it when it is about to expire."""
        credential = await CalendarCredentialService.find_credential(user_id, db)
        if credential is None:
            raise ServiceError(status.HTTP_401_UNAUTHORIZED, "not-connected")

        access_token = credential.access_token
        expires_at = as_utc(credential.expires_at) if credential.expires_at else None
        fresh = expires_at is not None and (expires_at - get_utc_now()) > timedelta(
            seconds=TOKEN_EXPIRY_MARGIN_SECONDS
        )

        if not access_token or not fresh:
            try:
                refreshed = await refresh_access_token(credential.refresh_token, settings, client)
                credential = await CalendarCredentialService.update_credential_tokens(
                    credential, refreshed, db
                )
            except (GoogleTokenError, GoogleOAuthConfigError, httpx.HTTPError) as e:
                log_server_error(
                    "getAuthorizedCalendarContext.refresh", e, {"userId": user_id}
                )
                raise ServiceError(
                    status.HTTP_401_UNAUTHORIZED, "reauthorization-required"
                ) from e
            access_token = credential.access_token

        if not access_token:
            raise ServiceError(status.HTTP_401_UNAUTHORIZED, "reauthorization-required")

        return CalendarContext(
            access_token=access_token,
            calendar_id=settings.google_calendar_id,
            scope=credential.scope,
        )

    @staticmethod
    async def _writable_context(user_id, db, settings, client) -> CalendarContext:
        context = await CalendarService.get_authorized_calendar_context(
            user_id, db, settings, client
        )
        if not has_calendar_write_scope(context.scope):
            raise ServiceError(status.HTTP_403_FORBIDDEN, "insufficient-scope")
        return context

    @staticmethod
    async def list_calendar_events(
        user_id: str,
        raw_range: str | None,
        raw_days: str | None,
        db: AsyncSession,
        settings: Settings,
        client: httpx.AsyncClient,
        now: datetime | None = None,
    ) -> dict:
        window = build_query_window(raw_range, raw_days, now)
        return await _load_calendar_events(user_id, window, db, settings, client)

    @staticmethod
    @async_cached_expire(_calendar_prefix, prefix=True)
    async def create_calendar_event(
        user_id: str, raw_body, db: AsyncSession, settings: Settings, client: httpx.AsyncClient
    ) -> dict:
        context = await CalendarService._writable_context(user_id, db, settings, client)
        payload = parse_event_payload(raw_body)

        try:
            response = await client.post(
                _events_url(context.calendar_id),
                json=to_google_event_request(payload),
                headers={"Authorization": f"Bearer {context.access_token}"},
            )
        except httpx.HTTPError as e:
            log_server_error("createCalendarEvent", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "calendar-internal-error"
            ) from e

        if not response.is_success:
            _raise_for_google_write_error(response, "create", "createCalendarEvent")

        event = normalize_google_event(_response_json(response))
        if event is None:
            raise ServiceError(status.HTTP_502_BAD_GATEWAY, "calendar-create-failed")
        return {"event": event}

    @staticmethod
    @async_cached_expire(_calendar_prefix, prefix=True)
    async def update_calendar_event(
        user_id: str,
        event_id: str,
        raw_body,
        db: AsyncSession,
        settings: Settings,
        client: httpx.AsyncClient,
    ) -> dict:
        context = await CalendarService._writable_context(user_id, db, settings, client)
        payload = parse_event_payload(raw_body)

        try:
            response = await client.patch(
                _events_url(context.calendar_id, event_id),
                json=to_google_event_request(payload),
                headers={"Authorization": f"Bearer {context.access_token}"},
            )
        except httpx.HTTPError as e:
            log_server_error("updateCalendarEvent", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "calendar-internal-error"
            ) from e

        if not response.is_success:
            _raise_for_google_write_error(response, "update", "updateCalendarEvent")

        event = normalize_google_event(_response_json(response))
        if event is None:
            raise ServiceError(status.HTTP_502_BAD_GATEWAY, "calendar-update-failed")
        return {"event": event}

    @staticmethod
    @async_cached_expire(_calendar_prefix, prefix=True)
    async def delete_calendar_event(
        user_id: str,
        event_id: str,
        db: AsyncSession,
        settings: Settings,
        client: httpx.AsyncClient,
    ) -> dict:
        context = await CalendarService._writable_context(user_id, db, settings, client)

        try:
            response = await client.delete(
                _events_url(context.calendar_id, event_id),
                headers={"Authorization": f"Bearer {context.access_token}"},
            )
        except httpx.HTTPError as e:
            log_server_error("deleteCalendarEvent", e)
            raise ServiceError(
                status.HTTP_500_INTERNAL_SERVER_ERROR, "calendar-internal-error"
            ) from e

        if not response.is_success:
            _raise_for_google_write_error(response, "delete", "deleteCalendarEvent")
        return {"ok": True}


@async_cached(_calendar_cache_key)
async def _load_calendar_events(
    user_id: str,
    window: CalendarWindow,
    db: AsyncSession,
    settings: Settings,
    client: httpx.AsyncClient,
) -> dict:
    try:
        context = await CalendarService.get_authorized_calendar_context(
            user_id, db, settings, client
        )
    except ServiceError as e:
        e.extra = {"connected": False}
        raise

    try:
        response = await client.get(
            _events_url(context.calendar_id),
            params={
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": "250",
                "showDeleted": "false",
                "timeMin": to_iso_z(window.time_min),
                "timeMax": to_iso_z(window.time_max),
            },
            headers={"Authorization": f"Bearer {context.access_token}"},
        )
    except httpx.HTTPError as e:
        log_server_error("listCalendarEvents", e)
        raise ServiceError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "calendar-internal-error",
            {"connected": False},
        ) from e

    if not response.is_success:
        payload = _response_json(response)
        reason = parse_google_error_reason(payload)

        if response.status_code == 401:
            raise ServiceError(
                status.HTTP_401_UNAUTHORIZED, "reauthorization-required", {"connected": False}
            )
        if response.status_code == 403 and reason == "insufficientPermissions":
            raise ServiceError(
                status.HTTP_403_FORBIDDEN, "insufficient-scope", {"connected": True}
            )

        log_server_error(
            "listCalendarEvents.googleApiError",
            "google-api-error",
            {"googleApi": summarize_google_api_error(response, reason, payload)},
        )
        raise ServiceError(
            status.HTTP_502_BAD_GATEWAY, "calendar-fetch-failed", {"connected": True}
        )

    payload = _response_json(response)
    items = payload.get("items") if isinstance(payload, dict) else None
    events = [event for event in map(normalize_google_event, items or []) if event]

    return {
        "connected": True,
        "calendarId": context.calendar_id,
        "range": window.range,
        "days": window.days,
        "timeMin": to_iso_z(window.time_min),
        "timeMax": to_iso_z(window.time_max),
        "syncedAt": to_iso_z(get_utc_now()),
        "events": events,
    }
