"""
Beds24 account setup, manual sync and CSV import
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from smarthjem.auth import require_admin, require_admin_access
from smarthjem.beds24_client import Beds24Error, exchange_invite_code
from smarthjem.context import AppContext, get_context
from smarthjem.sync_engine import SYNC_ERRORS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Beds24"])


class Beds24SetupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    invite_code: Optional[str] = Field(default=None, alias="inviteCode")
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    prop_id: str = Field(alias="propId", min_length=1, pattern=r"^\s*\d+\s*$")
    sync_enabled: bool = Field(default=True, alias="syncEnabled")
    sync_future_days: int = Field(default=365, alias="syncFutureDays", ge=1, le=1095)


class CsvImportRequest(BaseModel):
    csv: str = Field(min_length=1)


class Beds24SyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    force_full: bool = Field(default=False, alias="forceFull")


def _user_or_404(ctx: AppContext, user_id: int) -> dict[str, Any]:
    user = ctx.state_store.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/beds24-configs")
def list_configs(
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return [settings.to_public_dict() for settings in ctx.state_store.list_beds24_configs()]


@router.get("/beds24-config/{user_id}")
def get_config(
    user_id: int,
    _: dict[str, Any] = Depends(require_admin_access),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    settings = ctx.state_store.get_beds24_config(user_id)
    if settings is None:
        raise HTTPException(status_code=404, detail="No Beds24 config for this user")
    return settings.to_public_dict()


@router.post("/beds24-config/{user_id}")
def setup_config(
    user_id: int,
    request: Beds24SetupRequest,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _user_or_404(ctx, user_id)
    fields: dict[str, Any] = {
        "prop_id": request.prop_id.strip(),
        "sync_enabled": request.sync_enabled,
        "sync_future_days": request.sync_future_days,
    }
    if request.invite_code:
        try:
            grant = exchange_invite_code(ctx.config_manager.load().beds24, request.invite_code)
        except (Beds24Error, requests.RequestException) as exc:
            logger.warning("Invite code exchange for user %s failed: %s", user_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        fields.update(
            api_key=grant.token,
            refresh_token=grant.refresh_token,
            token_expiry=grant.expires_at,
            scopes=grant.scopes,
        )
    elif request.api_key:
        fields.update(api_key=request.api_key.strip(), refresh_token="", token_expiry=None)
    elif ctx.state_store.get_beds24_config(user_id) is None:
        raise HTTPException(status_code=400, detail="inviteCode or apiKey is required")

    settings = ctx.state_store.save_beds24_config(user_id, **fields)
    logger.info("Beds24 config for user %s saved by admin %s", user_id, admin["id"])
    try:
        client = ctx.sync_engine.beds24_client_for(user_id)
        connected, message = client.test_connection() if client else (False, "Not configured")
    except SYNC_ERRORS as exc:
        connected, message = False, str(exc)
    payload = settings.to_public_dict()
    payload["connection"] = {"ok": connected, "message": message}
    return payload


@router.delete("/beds24-config/{user_id}")
def delete_config(
    user_id: int,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, str]:
    if not ctx.state_store.delete_beds24_config(user_id):
        raise HTTPException(status_code=404, detail="No Beds24 config for this user")
    return {"message": "beds24 config deleted"}


@router.post("/beds24-sync/{user_id}")
def sync_user(
    user_id: int,
    request: Optional[Beds24SyncRequest] = None,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    _user_or_404(ctx, user_id)
    force_full = bool(request and request.force_full)
    try:
        return ctx.sync_engine.sync_beds24_user(user_id, force_full=force_full)
    except SYNC_ERRORS as exc:
        logger.warning("Manual Beds24 sync for user %s failed: %s", user_id, exc)
        raise HTTPException(status_code=502, detail=f"Beds24 sync failed: {exc}") from exc


@router.post("/import-beds24-csv/{user_id}")
def import_csv(
    user_id: int,
    request: CsvImportRequest,
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, int]:
    _user_or_404(ctx, user_id)
    return ctx.sync_engine.import_beds24_csv(user_id, request.csv)
