"""
System settings, maintenance mode and housekeeping
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from smarthjem.auth import require_admin
from smarthjem.context import AppContext, get_context
from smarthjem.state_store import StateStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Settings"])

MAINTENANCE_ENABLED_KEY = "maintenance.enabled"
MAINTENANCE_MESSAGE_KEY = "maintenance.message"
DEFAULT_MAINTENANCE_MESSAGE = "Siden er under ombygging og vil være snart tilbake"


class SettingRequest(BaseModel):
    key: str = Field(min_length=1, max_length=200)
    value: str


class SettingUpdateRequest(BaseModel):
    value: str


class MaintenanceRequest(BaseModel):
    enabled: bool
    message: Optional[str] = None


def maintenance_state(state_store: StateStore) -> dict[str, Any]:
    return {
        "maintenance": state_store.get_setting(MAINTENANCE_ENABLED_KEY) == "true",
        "message": state_store.get_setting(MAINTENANCE_MESSAGE_KEY) or DEFAULT_MAINTENANCE_MESSAGE,
    }


@router.get("/settings")
def list_settings(ctx: AppContext = Depends(get_context)) -> list[dict[str, Any]]:
    return ctx.state_store.list_settings()


@router.get("/settings/{key}")
def get_setting(key: str, ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    value = ctx.state_store.get_setting(key)
    if value is None:
        raise HTTPException(status_code=404, detail="Setting not found")
    return {"key": key, "value": value}


@router.post("/admin/settings", status_code=201)
def create_setting(
    request: SettingRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    if ctx.state_store.get_setting(request.key) is not None:
        raise HTTPException(status_code=409, detail="Setting already exists")
    return ctx.state_store.set_setting(request.key, request.value)


@router.put("/admin/settings/{key}")
def update_setting(
    key: str,
    request: SettingUpdateRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    return ctx.state_store.set_setting(key, request.value)


@router.get("/maintenance-status")
def maintenance_status(ctx: AppContext = Depends(get_context)) -> dict[str, Any]:
    return maintenance_state(ctx.state_store)


@router.post("/admin/maintenance-mode")
def set_maintenance_mode(
    request: MaintenanceRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    ctx.state_store.set_setting(MAINTENANCE_ENABLED_KEY, "true" if request.enabled else "false")
    if request.message is not None:
        ctx.state_store.set_setting(MAINTENANCE_MESSAGE_KEY, request.message.strip() or DEFAULT_MAINTENANCE_MESSAGE)
    logger.info("Maintenance mode %s by admin %s", "enabled" if request.enabled else "disabled", admin["id"])
    return maintenance_state(ctx.state_store)


@router.post("/admin/cleanup-tokens")
def cleanup_tokens(
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, int]:
    removed = ctx.state_store.cleanup_reset_tokens(datetime.now(timezone.utc))
    logger.info("Removed %s expired or used reset tokens", removed)
    return {"removed": removed}
