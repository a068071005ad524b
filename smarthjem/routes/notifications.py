"""
In-app notifications
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from smarthjem.auth import get_current_user, require_admin
from smarthjem.context import AppContext, get_context

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("")
def list_notifications(
    limit: int = Query(default=50, ge=1, le=500),
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.state_store.list_notifications(user["id"], limit)


@router.get("/unread-count")
def unread_count(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, int]:
    return {"count": ctx.state_store.unread_notification_count(user["id"])}


@router.put("/read-all")
def mark_all_read(
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, int]:
    return {"updated": ctx.state_store.mark_all_notifications_read(user["id"])}


@router.put("/{notification_id}/read")
def mark_read(
    notification_id: int,
    user: dict[str, Any] = Depends(get_current_user),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    if not ctx.state_store.mark_notification_read(notification_id, user["id"]):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"message": "marked as read"}


@router.post("/test", status_code=201)
def send_test_notification(
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.notifier.notify(
        admin["id"],
        type="test",
        title="Testvarsel",
        message="Dette er et testvarsel fra Smart Hjem",
        from_user_id=admin["id"],
        email=True,
    )
