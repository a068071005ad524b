from __future__ import annotations

from pathlib import Path

from fastapi import Request

from smarthjem.backup import BackupManager
from smarthjem.config_manager import ConfigManager
from smarthjem.notifier import Notifier
from smarthjem.scheduler import BackupScheduler, SyncScheduler
from smarthjem.state_store import StateStore
from smarthjem.support import SupportService
from smarthjem.sync_engine import SyncEngine


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.config_manager.ensure_jwt_secret()
        self.state_store = StateStore(state_path)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store)
        self.scheduler = SyncScheduler(self.sync_engine, self.config_manager)
        self.notifier = Notifier(self.config_manager, self.state_store)
        self.support = SupportService(self.state_store, self.notifier)
        self.backups = BackupManager(self.config_manager, self.state_store, Path(state_path).parent / "backups")
        self.backup_scheduler = BackupScheduler(self.backups, self.config_manager)


def get_context(request: Request) -> AppContext:
    return request.app.state.context
