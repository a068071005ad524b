"""
Support cases: conversations between users and admins
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from smarthjem.auth import get_current_user, require_admin, require_admin_access
from smarthjem.context import AppContext, get_context
from smarthjem.support import CaseError, CasePermissionError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Support"])

PRIORITIES = ("low", "medium", "high", "urgent")


class CaseCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    category: str = "general"
    priority: str = "medium"
    message: str = ""


class MessageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    attachment_url: Optional[str] = Field(default=None, alias="attachmentUrl")


class AssignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    admin_id: Optional[int] = Field(default=None, alias="adminId")
    department: Optional[str] = None


class AttachmentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(alias="fileName", min_length=1)
    file_type: Optional[str] = Field(default=None, alias="fileType")
    file_size: Optional[int] = Field(default=None, alias="fileSize", ge=0)
    file_url: str = Field(alias="fileUrl", min_length=1)
    message_id: Optional[int] = Field(default=None, alias="messageId")


def _case_or_error(ctx: AppContext, user: dict[str, Any], case_id: int) -> dict[str, Any]:
    try:
        case = ctx.support.get_case(case_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if not ctx.support.can_view(user, case):
        raise HTTPException(status_code=403, detail="No access to this case")
    return case


def _run(action: Any, *args: Any, **kwargs: Any) -> Any:
    try:
        return action(*args, **kwargs)
    except CasePermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except CaseError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post("/cases", status_code=201)
def create_case(
    request: CaseCreateRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if request.priority not in PRIORITIES:
        raise HTTPException(status_code=400, detail=f"Priority must be one of: {', '.join(PRIORITIES)}")
    return ctx.support.create_case(
        user,
        title=request.title,
        category=request.category,
        priority=request.priority,
        message=request.message,
    )


@router.get("/cases")
def list_own_cases(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.support.overview(ctx.state_store.list_cases(user_id=user["id"]))


@router.get("/cases/unread-count")
def unread_count(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, int]:
    return {"count": ctx.support.unread_count(user)}


@router.get("/cases/{case_id}")
def get_case(
    case_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.support.overview([_case_or_error(ctx, user, case_id)])[0]


@router.get("/cases/{case_id}/messages")
def list_messages(
    case_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    case = _case_or_error(ctx, user, case_id)
    return _run(ctx.support.list_messages, user, case)


@router.post("/cases/{case_id}/messages", status_code=201)
def post_message(
    case_id: int,
    request: MessageRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    case = _case_or_error(ctx, user, case_id)
    return _run(ctx.support.post_message, user, case, request.message, request.attachment_url)


@router.put("/cases/{case_id}/messages/{message_id}/read")
def mark_message_read(
    case_id: int,
    message_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    _case_or_error(ctx, user, case_id)
    message = ctx.state_store.get_case_message(message_id)
    if message is None or message["case_id"] != case_id:
        raise HTTPException(status_code=404, detail="Message not found")
    ctx.state_store.mark_case_message_read(message_id)
    return {"message": "marked as read"}


@router.post("/cases/{case_id}/close")
def close_case(
    case_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    case = _case_or_error(ctx, user, case_id)
    return _run(ctx.support.close_case, user, case)


@router.post("/cases/{case_id}/reopen")
def reopen_case(
    case_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    case = _case_or_error(ctx, user, case_id)
    return _run(ctx.support.reopen_case, user, case)


@router.get("/cases/{case_id}/attachments")
def list_attachments(
    case_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    _case_or_error(ctx, user, case_id)
    return ctx.state_store.list_case_attachments(case_id)


@router.post("/cases/{case_id}/attachments", status_code=201)
def add_attachment(
    case_id: int,
    request: AttachmentRequest,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    case = _case_or_error(ctx, user, case_id)
    if not ctx.support.can_change(user, case):
        raise HTTPException(status_code=403, detail="No access to this case")
    return ctx.state_store.add_case_attachment(
        case_id=case_id,
        uploader_id=user["id"],
        file_name=request.file_name,
        file_url=request.file_url,
        file_type=request.file_type,
        file_size=request.file_size,
        message_id=request.message_id,
    )


@router.get("/admin/cases")
def admin_list_cases(
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.support.overview(ctx.state_store.list_cases())


@router.get("/admin/cases/assigned")
def admin_assigned_cases(
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.support.overview(ctx.state_store.list_cases(admin_id=admin["id"]))


@router.put("/admin/cases/{case_id}/assign")
def assign_case(
    case_id: int,
    request: AssignRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    case = _case_or_error(ctx, admin, case_id)
    updated = _run(ctx.support.assign, admin, case, admin_id=request.admin_id, department=request.department)
    logger.info("Case %s assigned by admin %s", case["case_number"], admin["id"])
    return updated
