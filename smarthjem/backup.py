from __future__ import annotations

import json
import logging
import re
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from smarthjem.config_manager import ConfigManager
from smarthjem.state_store import StateStore

logger = logging.getLogger(__name__)

BACKUP_TABLES = (
    "ical_feeds",
    "events",
    "marked_days",
    "ical_event_notes",
    "event_collaborators",
    "event_suggestions",
)
BACKUP_FILENAME_RE = re.compile(r"^calendar_backup_[0-9TZ\-]+\.json$")


class BackupManager:
    """JSON snapshots of the calendar tables, kept in a rotating directory."""

    def __init__(self, config_manager: ConfigManager, state_store: StateStore, default_directory: Path) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.default_directory = Path(default_directory)

    @property
    def directory(self) -> Path:
        configured = self.config_manager.load().backup.directory
        path = Path(configured) if configured else self.default_directory
        path.mkdir(parents=True, exist_ok=True)
        return path

    def create_backup(self, automatic: bool = True) -> dict[str, Any]:
        data = self.state_store.dump_tables(BACKUP_TABLES)
        summary = {table: len(rows) for table, rows in data.items()}
        stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        filename = f"calendar_backup_{stamp}.json"
        path = self.directory / filename
        payload = {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "tables": data,
        }
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        record = self.state_store.record_backup(
            filename, size=path.stat().st_size, is_automatic=automatic, summary=summary
        )
        logger.info("Backup %s written (%s)", filename, summary)
        self._prune()
        return record

    def list_backups(self) -> list[dict[str, Any]]:
        return self.state_store.list_backups()

    def restore_backup(self, filename: str) -> dict[str, int]:
        if not BACKUP_FILENAME_RE.match(filename or ""):
            raise ValueError(f"Invalid backup filename: {filename!r}")
        path = self.directory / filename
        if not path.is_file():
            raise LookupError(f"Backup {filename} not found")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ValueError(f"Backup {filename} is unreadable: {exc}") from exc
        tables = payload.get("tables") if isinstance(payload, dict) else None
        if not isinstance(tables, dict):
            raise ValueError(f"Backup {filename} has no tables")
        data: dict[str, list[dict[str, Any]]] = {}
        for table in BACKUP_TABLES:
            rows = tables.get(table, [])
            if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
                raise ValueError(f"Backup {filename} has malformed rows for {table}")
            data[table] = rows

        safety = self.create_backup(automatic=False)
        logger.info("Safety backup %s written before restoring %s", safety["filename"], filename)
        try:
            counts = self.state_store.replace_tables(data)
        except sqlite3.Error as exc:
            raise ValueError(f"Backup {filename} could not be restored: {exc}") from exc
        logger.warning("Restored backup %s: %s", filename, counts)
        return counts

    def _prune(self) -> None:
        max_backups = self.config_manager.load().backup.max_backups
        for record in self.state_store.list_backups()[max_backups:]:
            path = self.directory / record["filename"]
            try:
                path.unlink()
            except FileNotFoundError:
                logger.warning("Backup file %s already gone", path)
            self.state_store.delete_backup(record["filename"])
            logger.info("Pruned backup %s", record["filename"])
