from __future__ import annotations

import logging
import threading
from typing import Optional

from smarthjem.backup import BackupManager
from smarthjem.config_manager import ConfigManager
from smarthjem.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, sync_engine: SyncEngine, config_manager: ConfigManager) -> None:
        self.sync_engine = sync_engine
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._manual_trigger_event = threading.Event()

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.running:
            return
        if not self.config_manager.load().sync.background_enabled:
            logger.info("Background sync disabled, scheduler not started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="smarthjem-sync-scheduler", daemon=True)
        self._thread.start()
        logger.info("Sync scheduler started")

    def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    def _run(self, trigger: str) -> None:
        try:
            self.sync_engine.run_once(trigger=trigger)
        except Exception:
            logger.exception("Sync run (%s) failed", trigger)

    def _loop(self) -> None:
        self._run("startup")

        while not self._stop_event.is_set():
            config = self.config_manager.load()
            interval_seconds = max(30, int(config.sync.interval_seconds))
            manual = self._manual_trigger_event.wait(timeout=interval_seconds)
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            self._run("manual" if manual else "scheduled")


class BackupScheduler:
    def __init__(self, backups: BackupManager, config_manager: ConfigManager) -> None:
        self.backups = backups
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.running:
            return
        if not self.config_manager.load().backup.enabled:
            logger.info("Automatic backups disabled, backup scheduler not started")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="smarthjem-backup-scheduler", daemon=True)
        self._thread.start()
        logger.info("Backup scheduler started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def _run(self) -> None:
        try:
            self.backups.create_backup(automatic=True)
        except Exception:
            logger.exception("Automatic backup failed")

    def _loop(self) -> None:
        self._run()

        while not self._stop_event.is_set():
            interval_seconds = self.config_manager.load().backup.interval_hours * 3600
            if self._stop_event.wait(timeout=interval_seconds):
                break
            self._run()
