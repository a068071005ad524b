"""
Admin agreements (meetings with a user) and their note threads
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from smarthjem.auth import get_current_user, require_admin
from smarthjem.context import AppContext, get_context
from smarthjem.models import serialize_datetime
from smarthjem.routes.events import check_range, parse_dt

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Agreements"])

MeetingType = Literal["general", "support", "consultation", "review"]
AgreementStatus = Literal["scheduled", "completed", "cancelled"]


class AgreementRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId")
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    meeting_date: str = Field(alias="meetingDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    location: Optional[str] = Field(default=None, alias="meetingLocation")
    meeting_type: MeetingType = Field(default="general", alias="meetingType")
    status: AgreementStatus = "scheduled"


class AgreementUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    meeting_date: Optional[str] = Field(default=None, alias="meetingDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    location: Optional[str] = Field(default=None, alias="meetingLocation")
    meeting_type: Optional[MeetingType] = Field(default=None, alias="meetingType")
    status: Optional[AgreementStatus] = None


class AgreementNoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = Field(min_length=1, max_length=5000)
    is_private: bool = Field(default=False, alias="isPrivate")


class AgreementNoteUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    is_private: Optional[bool] = Field(default=None, alias="isPrivate")


def _agreement_or_404(ctx: AppContext, agreement_id: int) -> dict[str, Any]:
    agreement = ctx.state_store.get_agreement(agreement_id)
    if agreement is None:
        raise HTTPException(status_code=404, detail="Agreement not found")
    return agreement


def _participant_agreement(ctx: AppContext, user: dict[str, Any], agreement_id: int) -> dict[str, Any]:
    agreement = _agreement_or_404(ctx, agreement_id)
    if user.get("is_admin") or user["id"] in (agreement["admin_id"], agreement["user_id"]):
        return agreement
    raise HTTPException(status_code=403, detail="Not your agreement")


def _note_or_404(ctx: AppContext, agreement_id: int, note_id: int) -> dict[str, Any]:
    note = ctx.state_store.get_agreement_note(note_id)
    if note is None or note["agreement_id"] != agreement_id:
        raise HTTPException(status_code=404, detail="Note not found")
    return note


def _dates(meeting_date: str, end_date: Optional[str]) -> tuple[datetime, Optional[datetime]]:
    start = parse_dt(meeting_date, "meetingDate")
    if start is None:
        raise HTTPException(status_code=400, detail="meetingDate is required")
    end = parse_dt(end_date, "endDate")
    check_range(start, end)
    return start, end


@router.get("/admin-agreements")
def list_agreements(
    userId: Optional[int] = None,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    if user.get("is_admin"):
        return ctx.state_store.list_agreements(admin_id=user["id"], user_id=userId)
    return ctx.state_store.list_agreements(user_id=user["id"])


@router.get("/admin-agreements/{agreement_id}")
def get_agreement(
    agreement_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return _participant_agreement(ctx, user, agreement_id)


@router.post("/admin-agreements", status_code=201)
def create_agreement(
    request: AgreementRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if ctx.state_store.get_user(request.user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    start, end = _dates(request.meeting_date, request.end_date)
    agreement = ctx.state_store.create_agreement(
        admin_id=admin["id"],
        user_id=request.user_id,
        title=request.title.strip(),
        description=request.description,
        meeting_date=start,
        end_date=end,
        location=request.location,
        meeting_type=request.meeting_type,
        status=request.status,
    )
    logger.info("Admin %s created agreement %s with user %s", admin["id"], agreement["id"], request.user_id)
    ctx.notifier.notify(
        request.user_id,
        type="agreement_created",
        title="Ny avtale",
        message=f"{agreement['title']} ({start.strftime('%d.%m.%Y %H:%M')})",
        from_user_id=admin["id"],
    )
    return agreement


@router.put("/admin-agreements/{agreement_id}")
def update_agreement(
    agreement_id: int,
    request: AgreementUpdateRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    agreement = _agreement_or_404(ctx, agreement_id)
    fields = request.model_dump(exclude_none=True)
    if "meeting_date" in fields or "end_date" in fields:
        start, end = _dates(
            fields.get("meeting_date", agreement["meeting_date"]),
            fields.get("end_date", agreement.get("end_date")),
        )
        fields["meeting_date"] = start
        fields["end_date"] = end
    now = serialize_datetime(datetime.now(timezone.utc))
    if fields.get("status") == "completed" and agreement["status"] != "completed":
        fields["completed_at"] = now
    if fields.get("status") == "cancelled" and agreement["status"] != "cancelled":
        fields["cancelled_at"] = now
    agreement = ctx.state_store.update_agreement(agreement_id, **fields)
    ctx.notifier.notify(
        agreement["user_id"],
        type="agreement_updated",
        title="Avtale oppdatert",
        message=agreement["title"],
        from_user_id=admin["id"],
    )
    return agreement


@router.delete("/admin-agreements/{agreement_id}")
def delete_agreement(
    agreement_id: int,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    agreement = _agreement_or_404(ctx, agreement_id)
    ctx.state_store.delete_agreement(agreement_id)
    ctx.notifier.notify(
        agreement["user_id"],
        type="agreement_cancelled",
        title="Avtale kansellert",
        message=agreement["title"],
        from_user_id=admin["id"],
    )
    return {"message": "agreement deleted"}


# notes


@router.get("/admin-agreements/{agreement_id}/notes")
def list_notes(
    agreement_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    _participant_agreement(ctx, user, agreement_id)
    return ctx.state_store.list_agreement_notes(agreement_id, include_private=bool(user.get("is_admin")))


@router.post("/admin-agreements/{agreement_id}/notes", status_code=201)
def create_note(
    agreement_id: int,
    request: AgreementNoteRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    agreement = _participant_agreement(ctx, user, agreement_id)
    if request.is_private and not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Only admins can write private notes")
    note = ctx.state_store.create_agreement_note(agreement_id, user["id"], request.content.strip(), request.is_private)
    if not note["is_private"]:
        recipient = agreement["admin_id"] if user["id"] == agreement["user_id"] else agreement["user_id"]
        ctx.notifier.notify(
            recipient,
            type="agreement_note",
            title="Nytt notat på avtale",
            message=agreement["title"],
            from_user_id=user["id"],
        )
    return note


@router.put("/admin-agreements/{agreement_id}/notes/{note_id}")
def update_note(
    agreement_id: int,
    note_id: int,
    request: AgreementNoteUpdateRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _participant_agreement(ctx, user, agreement_id)
    note = _note_or_404(ctx, agreement_id, note_id)
    if note["author_id"] != user["id"] and not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Not your note")
    fields = request.model_dump(exclude_none=True)
    if fields.get("is_private") and not user.get("is_admin"):
        raise HTTPException(status_code=403, detail="Only admins can write private notes")
    return ctx.state_store.update_agreement_note(note_id, **fields)


@router.delete("/admin-agreements/{agreement_id}/notes/{note_id}")
def delete_note(
    agreement_id: int,
    note_id: int,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    _agreement_or_404(ctx, agreement_id)
    _note_or_404(ctx, agreement_id, note_id)
    ctx.state_store.delete_agreement_note(note_id)
    return {"message": "note deleted"}
