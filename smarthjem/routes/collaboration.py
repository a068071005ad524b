"""
Collaborative events shared by code, and change suggestions from collaborators
"""
from __future__ import annotations

import logging
import secrets
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from smarthjem.auth import get_current_user
from smarthjem.context import AppContext, get_context
from smarthjem.models import DEFAULT_EVENT_COLOR, EventRecord, serialize_datetime
from smarthjem.reconciler import sanitize_description
from smarthjem.routes.events import check_range, parse_dt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Collaboration"])

SuggestionType = Literal["title", "description", "startTime", "endTime", "location"]
SUGGESTION_FIELDS = {
    "title": "title",
    "description": "description",
    "startTime": "start",
    "endTime": "end",
    "location": "location",
}


class CollaborativeEventRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=500)
    description: str = ""
    start_time: str = Field(alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    all_day: bool = Field(default=False, alias="allDay")
    location: str = ""


class JoinRequest(BaseModel):
    code: str = Field(min_length=1)


class SuggestionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: SuggestionType
    suggested_value: str = Field(alias="suggestedValue")
    original_value: Optional[str] = Field(default=None, alias="originalValue")
    message: Optional[str] = Field(default=None, max_length=2000)


class ResolveRequest(BaseModel):
    status: Literal["approved", "rejected"]


def _event_or_404(ctx: AppContext, event_id: int) -> EventRecord:
    event = ctx.state_store.get_event(event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def _require_participant(ctx: AppContext, user: dict[str, Any], event: EventRecord) -> None:
    if user.get("is_admin") or event.user_id == user["id"]:
        return
    if ctx.state_store.get_collaborator(event.id, user["id"]) is None:
        raise HTTPException(status_code=403, detail="Not a collaborator on this event")


def _current_value(event: EventRecord, suggestion_type: str) -> str:
    value = getattr(event, SUGGESTION_FIELDS[suggestion_type])
    if suggestion_type in ("startTime", "endTime"):
        return serialize_datetime(value) or ""
    return str(value or "")


@router.post("/collaborative-events", status_code=201)
def create_collaborative_event(
    request: CollaborativeEventRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    start = parse_dt(request.start_time, "startTime")
    if start is None:
        raise HTTPException(status_code=400, detail="startTime is required")
    end = parse_dt(request.end_time, "endTime")
    check_range(start, end)
    event = ctx.state_store.create_event(
        EventRecord(
            user_id=user["id"],
            title=request.title.strip(),
            description=sanitize_description(request.description),
            start=start,
            end=end,
            color=DEFAULT_EVENT_COLOR,
            all_day=request.all_day,
            location=request.location,
            is_collaborative=True,
            collaboration_code=secrets.token_hex(4),
        )
    )
    ctx.state_store.add_collaborator(event.id, user["id"], role="owner")
    logger.info("User %s created collaborative event %s", user["id"], event.id)
    return event.to_dict()


@router.get("/collaborative-events")
def list_collaborative_events(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    result = []
    for event, role in ctx.state_store.list_collaborative_events(user["id"]):
        payload = event.to_dict()
        payload["is_collaborative_owner"] = role == "owner"
        result.append(payload)
    return result


@router.get("/collaborative-events/{code}")
def get_collaborative_event(
    code: str,
    _: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    event = ctx.state_store.get_event_by_collaboration_code(code)
    if event is None:
        raise HTTPException(status_code=404, detail="Event not found")
    return event.to_dict()


@router.post("/collaborative-events/{event_id}/join")
def join_collaborative_event(
    event_id: int,
    request: JoinRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    event = _event_or_404(ctx, event_id)
    if not event.is_collaborative:
        raise HTTPException(status_code=400, detail="Event is not collaborative")
    if not secrets.compare_digest(request.code.strip().encode(), (event.collaboration_code or "").encode()):
        raise HTTPException(status_code=403, detail="Invalid collaboration code")
    role = "owner" if event.user_id == user["id"] else "guest"
    collaborator = ctx.state_store.add_collaborator(event.id, user["id"], role=role)
    return {"message": "joined", "collaborator": collaborator}


@router.get("/collaborative-events/{event_id}/collaborators")
def list_collaborators(
    event_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    event = _event_or_404(ctx, event_id)
    _require_participant(ctx, user, event)
    return ctx.state_store.list_collaborators(event_id)


@router.delete("/collaborative-events/{event_id}/collaborators/{user_id}")
def remove_collaborator(
    event_id: int,
    user_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    event = _event_or_404(ctx, event_id)
    if user_id == event.user_id:
        raise HTTPException(status_code=400, detail="The owner cannot be removed")
    if not (user.get("is_admin") or user["id"] in (event.user_id, user_id)):
        raise HTTPException(status_code=403, detail="Not allowed to remove this collaborator")
    if not ctx.state_store.remove_collaborator(event_id, user_id):
        raise HTTPException(status_code=404, detail="Collaborator not found")
    return {"message": "collaborator removed"}


# suggestions


@router.post("/events/{event_id}/suggestions", status_code=201)
def create_suggestion(
    event_id: int,
    request: SuggestionRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    event = _event_or_404(ctx, event_id)
    _require_participant(ctx, user, event)
    if request.type in ("startTime", "endTime"):
        parse_dt(request.suggested_value, request.type)
    suggestion = ctx.state_store.create_suggestion(
        event_id=event_id,
        suggested_by=user["id"],
        type=request.type,
        original_value=request.original_value
        if request.original_value is not None
        else _current_value(event, request.type),
        suggested_value=request.suggested_value,
        message=request.message,
    )
    if event.user_id != user["id"]:
        ctx.notifier.notify(
            event.user_id,
            type="suggestion_created",
            title="Nytt forslag",
            message=f"{user.get('name') or user['username']} foreslår endring av {event.title}",
            from_user_id=user["id"],
            event_id=event.id,
        )
    return suggestion


@router.get("/events/{event_id}/suggestions")
def list_suggestions(
    event_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    _require_participant(ctx, user, _event_or_404(ctx, event_id))
    return ctx.state_store.list_suggestions(event_id)


@router.get("/events/{event_id}/suggestions/pending")
def list_pending_suggestions(
    event_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    _require_participant(ctx, user, _event_or_404(ctx, event_id))
    return ctx.state_store.list_suggestions(event_id, status="pending")


def _apply_suggestion(event: EventRecord, suggestion: dict[str, Any]) -> None:
    kind = suggestion["type"]
    value = suggestion["suggested_value"]
    if kind in ("startTime", "endTime"):
        parsed = parse_dt(value, kind)
        if kind == "startTime":
            if parsed is None:
                raise HTTPException(status_code=400, detail="startTime is required")
            event.start = parsed
        else:
            event.end = parsed
        check_range(event.start, event.end)
    elif kind == "description":
        event.description = sanitize_description(value)
    elif kind == "title":
        if not value.strip():
            raise HTTPException(status_code=400, detail="Title must not be empty")
        event.title = value.strip()
    else:
        event.location = value


@router.post("/suggestions/{suggestion_id}/resolve")
def resolve_suggestion(
    suggestion_id: int,
    request: ResolveRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    suggestion = ctx.state_store.get_suggestion(suggestion_id)
    if suggestion is None:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    event = _event_or_404(ctx, suggestion["event_id"])
    if not (user.get("is_admin") or event.user_id == user["id"]):
        raise HTTPException(status_code=403, detail="Only the event owner can resolve suggestions")
    if suggestion["status"] != "pending":
        raise HTTPException(status_code=400, detail="Suggestion is already resolved")
    if request.status == "approved":
        _apply_suggestion(event, suggestion)
        event = ctx.state_store.save_event(event)
        ctx.sync_engine.update_block(event)
    suggestion = ctx.state_store.resolve_suggestion(suggestion_id, status=request.status, resolved_by=user["id"])
    ctx.notifier.notify(
        suggestion["suggested_by"],
        type=f"suggestion_{request.status}",
        title="Forslag godkjent" if request.status == "approved" else "Forslag avvist",
        message=event.title,
        from_user_id=user["id"],
        event_id=event.id,
    )
    return {"suggestion": suggestion, "event": event.to_dict()}
