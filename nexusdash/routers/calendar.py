from typing import Any

from fastapi import APIRouter, Body, Query, status

from nexusdash.core.config import SettingsDep
from nexusdash.dependencies import ActorDep, DbDep
from nexusdash.services.calendar_service import CalendarService
from nexusdash.services.google_calendar import GoogleHttpClientDep

router = APIRouter(prefix="/api/calendar", tags=["calendar"])


@router.get("/events")
async def list_events(
    actor_user_id: ActorDep,
    db: DbDep,
    settings: SettingsDep,
    client: GoogleHttpClientDep,
    range: str | None = Query(default=None),
    days: str | None = Query(default=None),
):
    """Events in the current week or the next N days of the connected calendar."""
    return await CalendarService.list_calendar_events(
        actor_user_id, range, days, db, settings, client
    )


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def create_event(
    actor_user_id: ActorDep,
    db: DbDep,
    settings: SettingsDep,
    client: GoogleHttpClientDep,
    payload: Any = Body(default=None),
):
    return await CalendarService.create_calendar_event(
        actor_user_id, payload, db, settings, client
    )


@router.patch("/events/{event_id}")
async def update_event(
    event_id: str,
    actor_user_id: ActorDep,
    db: DbDep,
    settings: SettingsDep,
    client: GoogleHttpClientDep,
    payload: Any = Body(default=None),
):
    return await CalendarService.update_calendar_event(
        actor_user_id, event_id, payload, db, settings, client
    )


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    actor_user_id: ActorDep,
    db: DbDep,
    settings: SettingsDep,
    client: GoogleHttpClientDep,
):
    return await CalendarService.delete_calendar_event(
        actor_user_id, event_id, db, settings, client
    )
