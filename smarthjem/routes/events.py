"""
Calendar events, marked days, iCal event notes and calendar export
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Response
from pydantic import BaseModel, ConfigDict, Field

from smarthjem.auth import can_access, get_current_user, require_admin, require_admin_access
from smarthjem.context import AppContext, get_context
from smarthjem.ical_client import build_calendar
from smarthjem.models import DEFAULT_EVENT_COLOR, EventRecord, parse_iso_datetime
from smarthjem.reconciler import sanitize_description

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Events"])


class EventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    start_time: str = Field(alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    color: str = DEFAULT_EVENT_COLOR
    all_day: bool = Field(default=False, alias="allDay")
    location: str = ""
    is_private: bool = Field(default=False, alias="isPrivate")
    user_id: Optional[int] = Field(default=None, alias="userId")


class EventUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    color: Optional[str] = None
    all_day: Optional[bool] = Field(default=None, alias="allDay")
    location: Optional[str] = None
    is_private: Optional[bool] = Field(default=None, alias="isPrivate")


class ColorOverrideRequest(BaseModel):
    color: Optional[str] = None


class MarkedDayRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str
    marker_type: str = Field(alias="markerType")
    color: str = "#8b5cf6"
    notes: Optional[str] = None


class MarkedDayUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: Optional[str] = None
    marker_type: Optional[str] = Field(default=None, alias="markerType")
    color: Optional[str] = None
    notes: Optional[str] = None


class NoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_external_id: str = Field(alias="eventExternalId", min_length=1)
    notes: str = ""


class NoteUpdateRequest(BaseModel):
    notes: str = ""


def parse_dt(value: Optional[str], field: str) -> Optional[datetime]:
    if value is None or str(value).strip() == "":
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {field}") from exc


def check_range(start: datetime, end: Optional[datetime]) -> None:
    if end is not None and end < start:
        raise HTTPException(status_code=400, detail="endTime must not be before startTime")


def _owned_event(ctx: AppContext, user: dict[str, Any], event_id: int) -> EventRecord:
    event = ctx.state_store.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    if not can_access(user, event.user_id):
        raise HTTPException(status_code=403, detail="Not your event")
    return event


def _create_event(ctx: AppContext, request: EventRequest, owner_id: int, actor_id: int) -> EventRecord:
    start = parse_dt(request.start_time, "startTime")
    if start is None:
        raise HTTPException(status_code=400, detail="startTime is required")
    end = parse_dt(request.end_time, "endTime")
    check_range(start, end)
    event = ctx.state_store.create_event(
        EventRecord(
            user_id=owner_id,
            title=request.title.strip(),
            description=sanitize_description(request.description),
            start=start,
            end=end,
            color=request.color or DEFAULT_EVENT_COLOR,
            all_day=request.all_day,
            location=request.location,
            is_private=request.is_private,
        )
    )
    if ctx.state_store.get_beds24_config(owner_id) is not None:
        event = ctx.sync_engine.push_block(event)
    ctx.notifier.event_changed(event, "created", actor_id)
    return event


def _sync_user_in_background(ctx: AppContext, user_id: int) -> None:
    try:
        ctx.sync_engine.sync_user(user_id)
    except Exception:
        logger.exception("On-demand sync failed for user %s", user_id)


@router.get("/events")
def list_events(
    background_tasks: BackgroundTasks,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    start = parse_dt(startDate, "startDate")
    end = parse_dt(endDate, "endDate")
    if not ctx.config_manager.load().sync.background_enabled:
        background_tasks.add_task(_sync_user_in_background, ctx, user["id"])
    return [event.to_dict() for event in ctx.state_store.list_events(user["id"], start, end)]


@router.get("/events/{event_id}")
def get_event(
    event_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return _owned_event(ctx, user, event_id).to_dict()


@router.post("/events", status_code=201)
def create_event(
    request: EventRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    owner_id = user["id"]
    if request.user_id is not None and request.user_id != user["id"]:
        if not user.get("is_admin"):
            raise HTTPException(status_code=403, detail="Only admins can create events for other users")
        if ctx.state_store.get_user(request.user_id) is None:
            raise HTTPException(status_code=404, detail="User not found")
        owner_id = request.user_id
    return _create_event(ctx, request, owner_id, user["id"]).to_dict()


@router.put("/events/{event_id}")
def update_event(
    event_id: int,
    request: EventUpdateRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    event = _owned_event(ctx, user, event_id)
    fields = request.model_dump(exclude_none=True)
    if "start_time" in fields:
        event.start = parse_dt(fields.pop("start_time"), "startTime") or event.start
    if "end_time" in fields:
        event.end = parse_dt(fields.pop("end_time"), "endTime")
    check_range(event.start, event.end)
    if "description" in fields:
        fields["description"] = sanitize_description(fields["description"])
    for key, value in fields.items():
        setattr(event, key, value)
    event = ctx.state_store.save_event(event)
    ctx.sync_engine.update_block(event)
    ctx.notifier.event_changed(event, "updated", user["id"])
    return event.to_dict()


@router.delete("/events/{event_id}")
def delete_event(
    event_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    event = _owned_event(ctx, user, event_id)
    ctx.sync_engine.delete_block(event)
    ctx.state_store.delete_event(event_id)
    ctx.notifier.event_changed(event, "deleted", user["id"])
    return {"message": "event deleted"}


@router.get("/admin/user-events/{user_id}")
def admin_user_events(
    user_id: int,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    start = parse_dt(startDate, "startDate")
    end = parse_dt(endDate, "endDate")
    return [event.to_dict() for event in ctx.state_store.list_events(user_id, start, end)]


@router.get("/admin/user-calendar/{user_id}")
def admin_user_calendar(
    user_id: int,
    force_refresh: bool = False,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    user = ctx.state_store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    refreshed = 0
    if force_refresh:
        stats, failures = ctx.sync_engine.sync_user_ical_feeds(user_id)
        refreshed = len(stats)
        if failures:
            logger.warning("Calendar refresh for user %s had %s feed failures", user_id, failures)
    events = ctx.state_store.list_events(user_id)
    return {
        "user": {"id": user["id"], "name": user.get("name"), "username": user["username"]},
        "refreshed_feeds": refreshed,
        "events": [event.to_dict() for event in events],
    }


@router.post("/admin/user-events/{user_id}", status_code=201)
def admin_create_event(
    user_id: int,
    request: EventRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if ctx.state_store.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return _create_event(ctx, request, user_id, admin["id"]).to_dict()


@router.delete("/admin/events/{event_id}")
def admin_delete_event(
    event_id: int,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    event = _owned_event(ctx, admin, event_id)
    ctx.sync_engine.delete_block(event)
    ctx.state_store.delete_event(event_id)
    return {"message": "event deleted"}


@router.put("/admin/events/{event_id}/color")
def admin_event_color(
    event_id: int,
    request: ColorOverrideRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if ctx.state_store.get_event(event_id) is None:
        raise HTTPException(status_code=404, detail="Event not found")
    color = (request.color or "").strip() or None
    return ctx.state_store.set_event_color_override(event_id, color).to_dict()


# marked days


def _owned_marked_day(ctx: AppContext, user: dict[str, Any], marked_day_id: int) -> dict[str, Any]:
    marked_day = ctx.state_store.get_marked_day(marked_day_id)
    if marked_day is None:
        raise HTTPException(status_code=404, detail="Marked day not found")
    if not can_access(user, marked_day["user_id"]):
        raise HTTPException(status_code=403, detail="Not your marked day")
    return marked_day


@router.get("/marked-days")
def list_marked_days(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_marked_days(user["id"], startDate, endDate)


@router.post("/marked-days", status_code=201)
def create_marked_day(
    request: MarkedDayRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.state_store.create_marked_day(user["id"], **request.model_dump())


@router.put("/marked-days/{marked_day_id}")
def update_marked_day(
    marked_day_id: int,
    request: MarkedDayUpdateRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _owned_marked_day(ctx, user, marked_day_id)
    return ctx.state_store.update_marked_day(marked_day_id, **request.model_dump(exclude_none=True))


@router.delete("/marked-days/{marked_day_id}")
def delete_marked_day(
    marked_day_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    _owned_marked_day(ctx, user, marked_day_id)
    ctx.state_store.delete_marked_day(marked_day_id)
    return {"message": "marked day deleted"}


@router.get("/admin/user-marked-days/{user_id}")
def admin_user_marked_days(
    user_id: int,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_marked_days(user_id)


# ical event notes


def _owned_note(ctx: AppContext, user: dict[str, Any], note_id: int) -> dict[str, Any]:
    note = ctx.state_store.get_note(note_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    if not can_access(user, note["user_id"]):
        raise HTTPException(status_code=403, detail="Not your note")
    return note


@router.get("/event-notes")
def list_notes(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_notes(user["id"])


@router.get("/event-notes/by-event/{external_id:path}")
def get_note_for_event(
    external_id: str,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    note = ctx.state_store.get_note_by_external_id(user["id"], external_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


@router.post("/event-notes", status_code=201)
def save_note(
    request: NoteRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    existing = ctx.state_store.get_note_by_external_id(user["id"], request.event_external_id)
    if existing is not None:
        return ctx.state_store.update_note(existing["id"], notes=request.notes)
    return ctx.state_store.create_note(user["id"], request.event_external_id, request.notes)


@router.put("/event-notes/{note_id}")
def update_note(
    note_id: int,
    request: NoteUpdateRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _owned_note(ctx, user, note_id)
    return ctx.state_store.update_note(note_id, notes=request.notes)


@router.delete("/event-notes/{note_id}")
def delete_note(
    note_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    _owned_note(ctx, user, note_id)
    ctx.state_store.delete_note(note_id)
    return {"message": "note deleted"}


# export


def _calendar_response(body: bytes, filename: str) -> Response:
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "Cache-Control": "public, max-age=300",
        },
    )


@router.get("/ical/{user_id}")
def public_ical_export(user_id: int, ctx: AppContext = Depends(get_context)) -> Response:
    user = ctx.state_store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    # imported feed events are never re-exported, otherwise feeds echo back into each other
    events = [
        event
        for event in ctx.state_store.list_events(user_id)
        if event.source_type in {"", "local_with_beds24"} and not event.is_private
    ]
    name = f"Smart Hjem - {user.get('name') or user['username']}"
    body = build_calendar(events, name, ctx.config_manager.load().sync.timezone)
    return _calendar_response(body, f"smarthjem-{user_id}.ics")


@router.get("/calendar/export-ical")
def export_own_calendar(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> Response:
    events = ctx.state_store.list_events(user["id"])
    body = build_calendar(events, "Smart Hjem", ctx.config_manager.load().sync.timezone)
    return _calendar_response(body, "smarthjem.ics")
