"""
Calendar backups: list, manual create and restore
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from smarthjem.auth import require_admin
from smarthjem.context import AppContext, get_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/backups", tags=["Backups"])


@router.get("")
def list_backups(
    _: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> list[dict[str, Any]]:
    return ctx.backups.list_backups()


@router.post("", status_code=201)
def create_backup(
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    try:
        record = ctx.backups.create_backup(automatic=False)
    except OSError as exc:
        logger.exception("Manual backup requested by admin %s failed", admin["id"])
        raise HTTPException(status_code=500, detail=f"Backup failed: {exc}") from exc
    return {"message": "backup created", "filename": record["filename"], "backup": record}


@router.post("/restore/{filename}")
def restore_backup(
    filename: str,
    admin: dict[str, Any] = Depends(require_admin),
    ctx: AppContext = Depends(get_context),
) -> dict[str, Any]:
    try:
        counts = ctx.backups.restore_backup(filename)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.warning("Admin %s restored backup %s", admin["id"], filename)
    return {"message": "backup restored", "restored": counts}
