from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from smarthjem.auth import decode_token, require_admin, require_admin_access
from smarthjem.config_manager import strip_masked_secrets
from smarthjem.context import AppContext
from smarthjem.main import LOG_FORMAT
from smarthjem.routes import (
    agreements,
    backups,
    beds24,
    collaboration,
    events,
    feeds,
    notifications,
    payouts,
    settings,
    support,
    users,
)
from smarthjem.routes.settings import maintenance_state

logger = logging.getLogger(__name__)

MAINTENANCE_EXEMPT_PATHS = ("/api/maintenance-status", "/api/login", "/api/logout")
MAINTENANCE_EXEMPT_PREFIXES = ("/api/admin/maintenance", "/api/auth/")


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


def _maintenance_exempt(path: str) -> bool:
    if not path.startswith("/api/"):
        return True
    return path in MAINTENANCE_EXEMPT_PATHS or path.startswith(MAINTENANCE_EXEMPT_PREFIXES)


def _is_admin_request(context: AppContext, request: Request) -> bool:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return False
    try:
        payload = decode_token(token.strip(), context.config_manager.load().auth)
    except HTTPException:
        return False
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        return False
    user = context.state_store.get_user(user_id)
    return bool(user and user.get("is_admin") and not user.get("is_blocked"))


def create_app() -> FastAPI:
    config_path = os.getenv("SMARTHJEM_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("SMARTHJEM_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)
    logging.basicConfig(level=context.config_manager.load().logging.level, format=LOG_FORMAT)

    app = FastAPI(title="Smart Hjem Kalender", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()
        app.state.context.backup_scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()
        app.state.context.backup_scheduler.stop()

    @app.middleware("http")
    async def maintenance_guard(request: Request, call_next: Any) -> Any:
        if not _maintenance_exempt(request.url.path):
            state = maintenance_state(app.state.context.state_store)
            if state["maintenance"] and not _is_admin_request(app.state.context, request):
                return JSONResponse(status_code=503, content=state)
        return await call_next(request)

    for module in (
        users,
        events,
        collaboration,
        feeds,
        beds24,
        support,
        payouts,
        settings,
        notifications,
        agreements,
        backups,
    ):
        app.include_router(module.router)

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config(_: dict[str, Any] = Depends(require_admin)) -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest, _: dict[str, Any] = Depends(require_admin)) -> dict[str, Any]:
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = strip_masked_secrets(request.payload, current)
        app.state.context.config_manager.update(sanitized_payload)
        return {
            "message": "config updated",
            "config": app.state.context.config_manager.masked(),
        }

    @app.post("/api/sync/run")
    def trigger_sync(_: dict[str, Any] = Depends(require_admin)) -> dict[str, Any]:
        if app.state.context.scheduler.running:
            app.state.context.scheduler.trigger_manual()
            return {"message": "sync triggered"}
        result = app.state.context.sync_engine.run_once(trigger="manual")
        return {"message": "sync completed", "result": result.to_dict()}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20, _: dict[str, Any] = Depends(require_admin_access)) -> dict[str, Any]:
        return {
            "scheduler_running": app.state.context.scheduler.running,
            "runs": app.state.context.state_store.recent_sync_runs(limit=limit),
        }

    @app.get("/api/audit/events")
    def audit_events(
        limit: int = 100, run_id: int | None = None, _: dict[str, Any] = Depends(require_admin_access)
    ) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id)}

    @app.get("/api/debug/runs/{run_id}")
    def debug_run(run_id: int, limit: int = 500, _: dict[str, Any] = Depends(require_admin)) -> dict[str, Any]:
        run = app.state.context.state_store.get_sync_run(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="run not found")
        events = app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id)
        return {"run": run, "events": events}

    return app


app = create_app()
