from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from smarthjem.models import (
    Beds24Settings,
    EventRecord,
    IcalFeed,
    serialize_datetime,
)


BOOL_COLUMNS = {
    "is_admin",
    "is_mini_admin",
    "is_blocked",
    "email_notifications_enabled",
    "all_day",
    "is_private",
    "csv_protected",
    "enabled",
    "sync_enabled",
    "is_active",
    "is_closed",
    "is_admin_message",
    "is_read",
    "is_collaborative",
    "reminder_sent",
    "is_automatic",
    "author_is_admin",
}

USER_FIELDS = {
    "username",
    "password_hash",
    "name",
    "email",
    "is_admin",
    "is_mini_admin",
    "is_blocked",
    "block_reason",
    "blocked_at",
    "admin_info",
    "admin_info_updated_at",
    "last_login_at",
    "phone_number",
    "account_number",
    "email_notifications_enabled",
}
MARKED_DAY_FIELDS = {"date", "marker_type", "color", "notes"}
FEED_FIELDS = {"name", "url", "color", "enabled", "feed_type", "last_synced"}
BEDS24_FIELDS = {
    "api_key",
    "refresh_token",
    "token_expiry",
    "scopes",
    "prop_id",
    "sync_enabled",
    "sync_future_days",
    "last_sync",
    "last_full_sync",
}
NOTE_FIELDS = {"event_external_id", "notes"}
PRICE_RANGE_FIELDS = {"name", "price_from", "price_to", "discount_percent", "is_active"}
PAYOUT_FIELDS = {
    "month",
    "year",
    "amount",
    "currency",
    "status",
    "rental_days",
    "paid_date",
    "notes",
    "registered_by_id",
}
CASE_FIELDS = {
    "admin_id",
    "department",
    "title",
    "category",
    "priority",
    "status",
    "is_closed",
    "closed_at",
    "closed_by_id",
}
AGREEMENT_FIELDS = {
    "user_id",
    "title",
    "description",
    "meeting_date",
    "end_date",
    "location",
    "status",
    "meeting_type",
    "completed_at",
    "cancelled_at",
    "reminder_sent",
}
AGREEMENT_NOTE_FIELDS = {"content", "is_private"}
EVENT_COLUMN_MIGRATIONS = (
    ("is_collaborative", "INTEGER NOT NULL DEFAULT 0"),
    ("collaboration_code", "TEXT"),
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_db(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return serialize_datetime(value)
    if isinstance(value, (list, tuple)):
        return ",".join(str(x) for x in value)
    return value


def _row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    item = dict(row)
    for key in BOOL_COLUMNS.intersection(item):
        item[key] = bool(item[key])
    if "source_json" in item:
        raw = item.pop("source_json")
        item["source"] = json.loads(raw) if raw else None
    if "details_json" in item:
        item["details"] = json.loads(item.pop("details_json") or "{}")
    if "summary_json" in item:
        item["summary"] = json.loads(item.pop("summary_json") or "{}")
    return item


def _rows(rows: Iterable[sqlite3.Row]) -> list[dict[str, Any]]:
    return [_row(row) for row in rows]


class StateStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            username TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            email TEXT,
            is_admin INTEGER NOT NULL DEFAULT 0,
            is_mini_admin INTEGER NOT NULL DEFAULT 0,
            is_blocked INTEGER NOT NULL DEFAULT 0,
            block_reason TEXT,
            blocked_at TEXT,
            admin_info TEXT,
            admin_info_updated_at TEXT,
            last_login_at TEXT,
            phone_number TEXT,
            account_number TEXT,
            email_notifications_enabled INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            start_time TEXT NOT NULL,
            end_time TEXT,
            color TEXT NOT NULL DEFAULT '#ef4444',
            admin_color_override TEXT,
            all_day INTEGER NOT NULL DEFAULT 0,
            location TEXT NOT NULL DEFAULT '',
            is_private INTEGER NOT NULL DEFAULT 0,
            csv_protected INTEGER NOT NULL DEFAULT 0,
            source_type TEXT NOT NULL DEFAULT '',
            source_uid TEXT NOT NULL DEFAULT '',
            source_feed_id INTEGER,
            source_json TEXT,
            is_collaborative INTEGER NOT NULL DEFAULT 0,
            collaboration_code TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_events_user_start ON events(user_id, start_time);
        CREATE INDEX IF NOT EXISTS idx_events_source ON events(source_type, source_uid);

        CREATE TABLE IF NOT EXISTS marked_days (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            marker_type TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#8b5cf6',
            notes TEXT
        );

        CREATE TABLE IF NOT EXISTS ical_feeds (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            url TEXT NOT NULL UNIQUE,
            color TEXT NOT NULL DEFAULT '#8b5cf6',
            enabled INTEGER NOT NULL DEFAULT 1,
            feed_type TEXT NOT NULL DEFAULT 'import',
            last_synced TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS beds24_configs (
            user_id INTEGER PRIMARY KEY,
            api_key TEXT,
            refresh_token TEXT,
            token_expiry TEXT,
            scopes TEXT,
            prop_id TEXT,
            sync_enabled INTEGER NOT NULL DEFAULT 1,
            sync_future_days INTEGER NOT NULL DEFAULT 365,
            last_sync TEXT,
            last_full_sync TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS ical_event_notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            event_external_id TEXT NOT NULL,
            notes TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS system_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS password_reset_tokens (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            token TEXT NOT NULL UNIQUE,
            expires_at TEXT NOT NULL,
            created_at TEXT NOT NULL,
            used_at TEXT
        );

        CREATE TABLE IF NOT EXISTS price_ranges (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            price_from TEXT NOT NULL,
            price_to TEXT NOT NULL,
            discount_percent TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS payouts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            month INTEGER NOT NULL,
            year INTEGER NOT NULL,
            amount TEXT NOT NULL,
            currency TEXT NOT NULL DEFAULT 'NOK',
            status TEXT NOT NULL DEFAULT 'pending',
            rental_days INTEGER,
            paid_date TEXT,
            notes TEXT,
            registered_by_id INTEGER,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS account_number_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            changed_by_id INTEGER,
            old_account_number TEXT,
            new_account_number TEXT,
            change_reason TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS cases (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            admin_id INTEGER,
            department TEXT,
            case_number TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'general',
            priority TEXT NOT NULL DEFAULT 'medium',
            status TEXT NOT NULL DEFAULT 'open',
            is_closed INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            closed_at TEXT,
            closed_by_id INTEGER
        );

        CREATE TABLE IF NOT EXISTS case_messages (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id INTEGER NOT NULL,
            sender_id INTEGER NOT NULL,
            target_user_id INTEGER,
            message TEXT NOT NULL,
            is_admin_message INTEGER NOT NULL DEFAULT 0,
            is_read INTEGER NOT NULL DEFAULT 0,
            attachment_url TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS case_attachments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            case_id INTEGER NOT NULL,
            message_id INTEGER,
            file_name TEXT NOT NULL,
            file_type TEXT,
            file_size INTEGER,
            file_url TEXT NOT NULL,
            uploader_id INTEGER NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            from_user_id INTEGER,
            type TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            event_id INTEGER,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS admin_agreements (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            admin_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            meeting_date TEXT NOT NULL,
            end_date TEXT,
            location TEXT,
            status TEXT NOT NULL DEFAULT 'scheduled',
            meeting_type TEXT NOT NULL DEFAULT 'general',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            completed_at TEXT,
            cancelled_at TEXT,
            reminder_sent INTEGER NOT NULL DEFAULT 0
        );

        CREATE TABLE IF NOT EXISTS agreement_notes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            agreement_id INTEGER NOT NULL,
            author_id INTEGER NOT NULL,
            content TEXT NOT NULL,
            is_private INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS event_collaborators (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            role TEXT NOT NULL DEFAULT 'guest',
            joined_at TEXT NOT NULL,
            UNIQUE(event_id, user_id)
        );

        CREATE TABLE IF NOT EXISTS event_suggestions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            event_id INTEGER NOT NULL,
            suggested_by INTEGER NOT NULL,
            type TEXT NOT NULL,
            original_value TEXT,
            suggested_value TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            message TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            resolved_by INTEGER,
            resolved_at TEXT
        );

        CREATE TABLE IF NOT EXISTS backups (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            filename TEXT NOT NULL UNIQUE,
            created_at TEXT NOT NULL,
            is_automatic INTEGER NOT NULL DEFAULT 1,
            size INTEGER NOT NULL,
            summary_json TEXT
        );

        CREATE TABLE IF NOT EXISTS sync_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_at TEXT NOT NULL,
            trigger TEXT NOT NULL,
            status TEXT NOT NULL,
            message TEXT,
            duration_ms INTEGER NOT NULL,
            changes_applied INTEGER NOT NULL,
            failures INTEGER NOT NULL
        );

        CREATE TABLE IF NOT EXISTS audit_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            run_id INTEGER,
            created_at TEXT NOT NULL,
            scope TEXT NOT NULL,
            ref TEXT NOT NULL,
            action TEXT NOT NULL,
            details_json TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS app_meta (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );
        """
        with self._lock:
            with self._connect() as conn:
                conn.executescript(schema_sql)
                existing = {row["name"] for row in conn.execute("PRAGMA table_info(events)")}
                for column, ddl in EVENT_COLUMN_MIGRATIONS:
                    if column not in existing:
                        conn.execute(f"ALTER TABLE events ADD COLUMN {column} {ddl}")
                conn.execute(
                    "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_collaboration_code ON events(collaboration_code)"
                )
                conn.commit()

    # generic helpers

    def _fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute(sql, params).fetchone()
        return _row(row)

    def _fetch_all(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        return _rows(rows)

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> int:
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(sql, params)
                conn.commit()
                return int(cursor.rowcount)

    def _insert(self, table: str, values: dict[str, Any]) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        with self._lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"INSERT INTO {table}({columns}) VALUES ({placeholders})",  # nosec B608
                    tuple(_to_db(v) for v in values.values()),
                )
                conn.commit()
                return int(cursor.lastrowid)

    def _update(
        self,
        table: str,
        key_column: str,
        key: Any,
        values: dict[str, Any],
        allowed: set[str],
        *,
        touch: bool = False,
    ) -> bool:
        changes = {k: v for k, v in values.items() if k in allowed}
        if touch:
            changes["updated_at"] = _utc_now()
        if not changes:
            return False
        assignments = ", ".join(f"{column} = ?" for column in changes)
        params = tuple(_to_db(v) for v in changes.values()) + (key,)
        return (
            self._execute(f"UPDATE {table} SET {assignments} WHERE {key_column} = ?", params)  # nosec B608
            > 0
        )

    # users

    def create_user(
        self,
        *,
        username: str,
        password_hash: str,
        name: str = "",
        email: str | None = None,
        is_admin: bool = False,
        is_mini_admin: bool = False,
        phone_number: str | None = None,
        account_number: str | None = None,
    ) -> dict[str, Any]:
        user_id = self._insert(
            "users",
            {
                "username": username,
                "password_hash": password_hash,
                "name": name,
                "email": email,
                "is_admin": is_admin,
                "is_mini_admin": is_mini_admin,
                "phone_number": phone_number,
                "account_number": account_number,
                "created_at": _utc_now(),
            },
        )
        return self.get_user(user_id)

    def get_user(self, user_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM users WHERE id = ?", (int(user_id),))

    def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        return self._fetch_one(
            "SELECT * FROM users WHERE lower(username) = lower(?)", (str(username).strip(),)
        )

    def list_users(self) -> list[dict[str, Any]]:
        return self._fetch_all("SELECT * FROM users ORDER BY id")

    def list_admins(self) -> list[dict[str, Any]]:
        return self._fetch_all("SELECT * FROM users WHERE is_admin = 1 ORDER BY id")

    def update_user(self, user_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("users", "id", int(user_id), fields, USER_FIELDS)
        return self.get_user(user_id)

    def delete_user(self, user_id: int) -> bool:
        user_id = int(user_id)
        with self._lock:
            with self._connect() as conn:
                for table in (
                    "events",
                    "marked_days",
                    "ical_feeds",
                    "beds24_configs",
                    "ical_event_notes",
                    "password_reset_tokens",
                    "payouts",
                    "notifications",
                    "account_number_logs",
                ):
                    if table == "events":
                        conn.execute(
                            "DELETE FROM event_collaborators WHERE event_id IN (SELECT id FROM events WHERE user_id = ?)",
                            (user_id,),
                        )
                        conn.execute(
                            "DELETE FROM event_suggestions WHERE event_id IN (SELECT id FROM events WHERE user_id = ?)",
                            (user_id,),
                        )
                    conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))  # nosec B608
                conn.execute("DELETE FROM event_collaborators WHERE user_id = ?", (user_id,))
                conn.execute("DELETE FROM event_suggestions WHERE suggested_by = ?", (user_id,))
                conn.execute(
                    "DELETE FROM agreement_notes WHERE agreement_id IN "
                    "(SELECT id FROM admin_agreements WHERE user_id = ? OR admin_id = ?)",
                    (user_id, user_id),
                )
                conn.execute("DELETE FROM admin_agreements WHERE user_id = ? OR admin_id = ?", (user_id, user_id))
                cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
                conn.commit()
                return cursor.rowcount > 0

    # events

    def _event_values(self, event: EventRecord) -> dict[str, Any]:
        return {
            "user_id": event.user_id,
            "title": event.title,
            "description": event.description or "",
            "start_time": serialize_datetime(event.start),
            "end_time": serialize_datetime(event.end),
            "color": event.color,
            "admin_color_override": event.admin_color_override,
            "all_day": event.all_day,
            "location": event.location or "",
            "is_private": event.is_private,
            "csv_protected": event.csv_protected,
            "source_type": event.source_type,
            "source_uid": event.source_uid,
            "source_feed_id": event.source_feed_id,
            "source_json": json.dumps(event.source, ensure_ascii=False) if event.source else None,
            "is_collaborative": event.is_collaborative,
            "collaboration_code": event.collaboration_code,
        }

    def create_event(self, event: EventRecord) -> EventRecord:
        values = self._event_values(event)
        now = _utc_now()
        values["created_at"] = now
        values["updated_at"] = now
        event_id = self._insert("events", values)
        return self.get_event(event_id)

    def save_event(self, event: EventRecord) -> EventRecord:
        if event.id is None:
            return self.create_event(event)
        values = self._event_values(event)
        values["updated_at"] = _utc_now()
        assignments = ", ".join(f"{column} = ?" for column in values)
        self._execute(
            f"UPDATE events SET {assignments} WHERE id = ?",  # nosec B608
            tuple(_to_db(v) for v in values.values()) + (int(event.id),),
        )
        return self.get_event(event.id)

    def get_event(self, event_id: int) -> EventRecord | None:
        row = self._fetch_one("SELECT * FROM events WHERE id = ?", (int(event_id),))
        return EventRecord.from_row(row) if row else None

    def list_events(
        self,
        user_id: int,
        start: datetime | None = None,
        end: datetime | None = None,
        source_type: str | None = None,
    ) -> list[EventRecord]:
        sql = "SELECT * FROM events WHERE user_id = ?"
        params: list[Any] = [int(user_id)]
        if source_type is not None:
            sql += " AND source_type = ?"
            params.append(source_type)
        if end is not None:
            sql += " AND start_time < ?"
            params.append(serialize_datetime(end))
        if start is not None:
            sql += " AND COALESCE(end_time, start_time) >= ?"
            params.append(serialize_datetime(start))
        sql += " ORDER BY start_time, id"
        return [EventRecord.from_row(row) for row in self._fetch_all(sql, tuple(params))]

    def list_feed_events(self, feed_id: int) -> list[EventRecord]:
        rows = self._fetch_all(
            "SELECT * FROM events WHERE source_type = 'ical' AND source_feed_id = ? ORDER BY id",
            (int(feed_id),),
        )
        return [EventRecord.from_row(row) for row in rows]

    def list_events_by_source_type(self, source_type: str) -> list[EventRecord]:
        rows = self._fetch_all(
            "SELECT * FROM events WHERE source_type = ? ORDER BY id", (source_type,)
        )
        return [EventRecord.from_row(row) for row in rows]

    def set_event_color_override(self, event_id: int, color: str | None) -> EventRecord | None:
        self._execute(
            "UPDATE events SET admin_color_override = ?, updated_at = ? WHERE id = ?",
            (color, _utc_now(), int(event_id)),
        )
        return self.get_event(event_id)

    def get_event_by_collaboration_code(self, code: str) -> EventRecord | None:
        row = self._fetch_one(
            "SELECT * FROM events WHERE is_collaborative = 1 AND collaboration_code = ?", (str(code).strip(),)
        )
        return EventRecord.from_row(row) if row else None

    def delete_event(self, event_id: int) -> bool:
        event_id = int(event_id)
        with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM event_collaborators WHERE event_id = ?", (event_id,))
                conn.execute("DELETE FROM event_suggestions WHERE event_id = ?", (event_id,))
                cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
                conn.commit()
                return cursor.rowcount > 0

    def delete_events(self, event_ids: Iterable[int]) -> int:
        ids = [int(x) for x in event_ids]
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        return self._execute(f"DELETE FROM events WHERE id IN ({placeholders})", tuple(ids))  # nosec B608

    def delete_feed_events(self, feed_id: int) -> int:
        return self._execute(
            "DELETE FROM events WHERE source_type = 'ical' AND source_feed_id = ?", (int(feed_id),)
        )

    # marked days

    def create_marked_day(self, user_id: int, **fields: Any) -> dict[str, Any]:
        values = {k: v for k, v in fields.items() if k in MARKED_DAY_FIELDS}
        values["user_id"] = int(user_id)
        return self.get_marked_day(self._insert("marked_days", values))

    def get_marked_day(self, marked_day_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM marked_days WHERE id = ?", (int(marked_day_id),))

    def list_marked_days(
        self, user_id: int, start_date: str | None = None, end_date: str | None = None
    ) -> list[dict[str, Any]]:
        sql = "SELECT * FROM marked_days WHERE user_id = ?"
        params: list[Any] = [int(user_id)]
        if start_date:
            sql += " AND date >= ?"
            params.append(start_date)
        if end_date:
            sql += " AND date <= ?"
            params.append(end_date)
        return self._fetch_all(sql + " ORDER BY date, id", tuple(params))

    def update_marked_day(self, marked_day_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("marked_days", "id", int(marked_day_id), fields, MARKED_DAY_FIELDS)
        return self.get_marked_day(marked_day_id)

    def delete_marked_day(self, marked_day_id: int) -> bool:
        return self._execute("DELETE FROM marked_days WHERE id = ?", (int(marked_day_id),)) > 0

    # ical feeds

    def create_feed(
        self,
        *,
        user_id: int,
        name: str,
        url: str,
        color: str,
        feed_type: str = "import",
        enabled: bool = True,
    ) -> IcalFeed:
        feed_id = self._insert(
            "ical_feeds",
            {
                "user_id": int(user_id),
                "name": name,
                "url": url,
                "color": color,
                "enabled": enabled,
                "feed_type": feed_type,
                "created_at": _utc_now(),
            },
        )
        return self.get_feed(feed_id)

    def get_feed(self, feed_id: int) -> IcalFeed | None:
        row = self._fetch_one("SELECT * FROM ical_feeds WHERE id = ?", (int(feed_id),))
        return IcalFeed.from_row(row) if row else None

    def get_feed_by_url(self, url: str) -> IcalFeed | None:
        row = self._fetch_one("SELECT * FROM ical_feeds WHERE url = ?", (str(url).strip(),))
        return IcalFeed.from_row(row) if row else None

    def list_feeds(self, user_id: int | None = None) -> list[IcalFeed]:
        if user_id is None:
            rows = self._fetch_all("SELECT * FROM ical_feeds ORDER BY id")
        else:
            rows = self._fetch_all(
                "SELECT * FROM ical_feeds WHERE user_id = ? ORDER BY id", (int(user_id),)
            )
        return [IcalFeed.from_row(row) for row in rows]

    def list_enabled_feeds(self, user_id: int | None = None, feed_type: str | None = "import") -> list[IcalFeed]:
        return [
            feed
            for feed in self.list_feeds(user_id)
            if feed.enabled and (feed_type is None or feed.feed_type == feed_type)
        ]

    def update_feed(self, feed_id: int, **fields: Any) -> IcalFeed | None:
        self._update("ical_feeds", "id", int(feed_id), fields, FEED_FIELDS)
        return self.get_feed(feed_id)

    def delete_feed(self, feed_id: int) -> bool:
        self.delete_feed_events(feed_id)
        return self._execute("DELETE FROM ical_feeds WHERE id = ?", (int(feed_id),)) > 0

    # beds24 configs

    def get_beds24_config(self, user_id: int) -> Beds24Settings | None:
        row = self._fetch_one("SELECT * FROM beds24_configs WHERE user_id = ?", (int(user_id),))
        return Beds24Settings.from_row(row) if row else None

    def list_beds24_configs(self, enabled_only: bool = False) -> list[Beds24Settings]:
        sql = "SELECT * FROM beds24_configs"
        if enabled_only:
            sql += " WHERE sync_enabled = 1"
        return [Beds24Settings.from_row(row) for row in self._fetch_all(sql + " ORDER BY user_id")]

    def save_beds24_config(self, user_id: int, **fields: Any) -> Beds24Settings:
        user_id = int(user_id)
        if self.get_beds24_config(user_id) is None:
            values = {k: v for k, v in fields.items() if k in BEDS24_FIELDS}
            now = _utc_now()
            values.update({"user_id": user_id, "created_at": now, "updated_at": now})
            self._insert("beds24_configs", values)
        else:
            self._update("beds24_configs", "user_id", user_id, fields, BEDS24_FIELDS, touch=True)
        return self.get_beds24_config(user_id)

    def delete_beds24_config(self, user_id: int) -> bool:
        return self._execute("DELETE FROM beds24_configs WHERE user_id = ?", (int(user_id),)) > 0

    # ical event notes

    def create_note(self, user_id: int, event_external_id: str, notes: str) -> dict[str, Any]:
        now = _utc_now()
        note_id = self._insert(
            "ical_event_notes",
            {
                "user_id": int(user_id),
                "event_external_id": event_external_id,
                "notes": notes,
                "created_at": now,
                "updated_at": now,
            },
        )
        return self.get_note(note_id)

    def get_note(self, note_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM ical_event_notes WHERE id = ?", (int(note_id),))

    def get_note_by_external_id(self, user_id: int, event_external_id: str) -> dict[str, Any] | None:
        return self._fetch_one(
            "SELECT * FROM ical_event_notes WHERE user_id = ? AND event_external_id = ?",
            (int(user_id), event_external_id),
        )

    def list_notes(self, user_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM ical_event_notes WHERE user_id = ? ORDER BY id", (int(user_id),)
        )

    def update_note(self, note_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("ical_event_notes", "id", int(note_id), fields, NOTE_FIELDS, touch=True)
        return self.get_note(note_id)

    def delete_note(self, note_id: int) -> bool:
        return self._execute("DELETE FROM ical_event_notes WHERE id = ?", (int(note_id),)) > 0

    # system settings

    def list_settings(self) -> list[dict[str, Any]]:
        return self._fetch_all("SELECT key, value, updated_at FROM system_settings ORDER BY key")

    def get_setting(self, key: str) -> str | None:
        row = self._fetch_one("SELECT value FROM system_settings WHERE key = ?", (str(key),))
        return None if row is None else str(row["value"])

    def set_setting(self, key: str, value: str) -> dict[str, Any]:
        self._execute(
            """
            INSERT INTO system_settings(key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (str(key), str(value), _utc_now()),
        )
        return self._fetch_one(
            "SELECT key, value, updated_at FROM system_settings WHERE key = ?", (str(key),)
        )

    # password reset tokens

    def create_reset_token(self, user_id: int, token: str, expires_at: datetime) -> dict[str, Any]:
        token_id = self._insert(
            "password_reset_tokens",
            {
                "user_id": int(user_id),
                "token": token,
                "expires_at": expires_at,
                "created_at": _utc_now(),
            },
        )
        return self._fetch_one("SELECT * FROM password_reset_tokens WHERE id = ?", (token_id,))

    def get_reset_token(self, token: str) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM password_reset_tokens WHERE token = ?", (str(token),))

    def mark_reset_token_used(self, token_id: int) -> None:
        self._execute(
            "UPDATE password_reset_tokens SET used_at = ? WHERE id = ?", (_utc_now(), int(token_id))
        )

    def cleanup_reset_tokens(self, now: datetime) -> int:
        return self._execute(
            "DELETE FROM password_reset_tokens WHERE used_at IS NOT NULL OR expires_at < ?",
            (serialize_datetime(now),),
        )

    # price ranges

    def list_price_ranges(self) -> list[dict[str, Any]]:
        return self._fetch_all("SELECT * FROM price_ranges ORDER BY CAST(price_from AS REAL), id")

    def get_price_range(self, price_range_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM price_ranges WHERE id = ?", (int(price_range_id),))

    def create_price_range(self, **fields: Any) -> dict[str, Any]:
        values = {k: v for k, v in fields.items() if k in PRICE_RANGE_FIELDS}
        now = _utc_now()
        values.update({"created_at": now, "updated_at": now})
        return self.get_price_range(self._insert("price_ranges", values))

    def update_price_range(self, price_range_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("price_ranges", "id", int(price_range_id), fields, PRICE_RANGE_FIELDS, touch=True)
        return self.get_price_range(price_range_id)

    def delete_price_range(self, price_range_id: int) -> bool:
        return self._execute("DELETE FROM price_ranges WHERE id = ?", (int(price_range_id),)) > 0

    # payouts

    def list_payouts(self, user_id: int | None = None, year: int | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM payouts WHERE 1 = 1"
        params: list[Any] = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(int(user_id))
        if year is not None:
            sql += " AND year = ?"
            params.append(int(year))
        return self._fetch_all(sql + " ORDER BY year DESC, month DESC, id DESC", tuple(params))

    def get_payout(self, payout_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM payouts WHERE id = ?", (int(payout_id),))

    def create_payout(self, user_id: int, **fields: Any) -> dict[str, Any]:
        values = {k: v for k, v in fields.items() if k in PAYOUT_FIELDS}
        now = _utc_now()
        values.update({"user_id": int(user_id), "created_at": now, "updated_at": now})
        return self.get_payout(self._insert("payouts", values))

    def update_payout(self, payout_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("payouts", "id", int(payout_id), fields, PAYOUT_FIELDS, touch=True)
        return self.get_payout(payout_id)

    def delete_payout(self, payout_id: int) -> bool:
        return self._execute("DELETE FROM payouts WHERE id = ?", (int(payout_id),)) > 0

    # account number logs

    def record_account_number_change(
        self,
        *,
        user_id: int,
        changed_by_id: int | None,
        old_account_number: str | None,
        new_account_number: str | None,
        change_reason: str = "",
    ) -> None:
        self._insert(
            "account_number_logs",
            {
                "user_id": int(user_id),
                "changed_by_id": changed_by_id,
                "old_account_number": old_account_number,
                "new_account_number": new_account_number,
                "change_reason": change_reason,
                "created_at": _utc_now(),
            },
        )

    def list_account_number_logs(self, user_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM account_number_logs WHERE user_id = ? ORDER BY id DESC", (int(user_id),)
        )

    # support cases

    def count_cases_created_since(self, since_iso: str) -> int:
        row = self._fetch_one("SELECT COUNT(*) AS total FROM cases WHERE created_at >= ?", (since_iso,))
        return int(row["total"]) if row else 0

    def create_case(
        self,
        *,
        user_id: int,
        case_number: str,
        title: str,
        category: str,
        priority: str,
    ) -> dict[str, Any]:
        now = _utc_now()
        case_id = self._insert(
            "cases",
            {
                "user_id": int(user_id),
                "case_number": case_number,
                "title": title,
                "category": category,
                "priority": priority,
                "status": "open",
                "is_closed": False,
                "created_at": now,
                "updated_at": now,
            },
        )
        return self.get_case(case_id)

    def get_case(self, case_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM cases WHERE id = ?", (int(case_id),))

    def list_cases(self, user_id: int | None = None, admin_id: int | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM cases WHERE 1 = 1"
        params: list[Any] = []
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(int(user_id))
        if admin_id is not None:
            sql += " AND admin_id = ?"
            params.append(int(admin_id))
        return self._fetch_all(sql + " ORDER BY updated_at DESC, id DESC", tuple(params))

    def update_case(self, case_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("cases", "id", int(case_id), fields, CASE_FIELDS, touch=True)
        return self.get_case(case_id)

    def add_case_message(
        self,
        *,
        case_id: int,
        sender_id: int,
        message: str,
        is_admin_message: bool,
        target_user_id: int | None = None,
        attachment_url: str | None = None,
    ) -> dict[str, Any]:
        message_id = self._insert(
            "case_messages",
            {
                "case_id": int(case_id),
                "sender_id": int(sender_id),
                "target_user_id": target_user_id,
                "message": message,
                "is_admin_message": is_admin_message,
                "is_read": False,
                "attachment_url": attachment_url,
                "created_at": _utc_now(),
            },
        )
        return self.get_case_message(message_id)

    def get_case_message(self, message_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM case_messages WHERE id = ?", (int(message_id),))

    def list_case_messages(self, case_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM case_messages WHERE case_id = ? ORDER BY id", (int(case_id),)
        )

    def mark_case_message_read(self, message_id: int) -> None:
        self._execute("UPDATE case_messages SET is_read = 1 WHERE id = ?", (int(message_id),))

    def mark_case_messages_read(self, case_id: int, *, admin_messages: bool) -> int:
        return self._execute(
            "UPDATE case_messages SET is_read = 1 WHERE case_id = ? AND is_admin_message = ? AND is_read = 0",
            (int(case_id), int(admin_messages)),
        )

    def case_message_summary(self, case_id: int) -> tuple[int, dict[str, Any] | None]:
        row = self._fetch_one(
            "SELECT COUNT(*) AS total FROM case_messages WHERE case_id = ?", (int(case_id),)
        )
        last = self._fetch_one(
            "SELECT * FROM case_messages WHERE case_id = ? ORDER BY id DESC LIMIT 1", (int(case_id),)
        )
        return (int(row["total"]) if row else 0), last

    def unread_case_messages_for_user(self, user_id: int) -> int:
        row = self._fetch_one(
            """
            SELECT COUNT(*) AS total
            FROM case_messages m
            JOIN cases c ON c.id = m.case_id
            WHERE c.user_id = ? AND m.is_admin_message = 1 AND m.is_read = 0
            """,
            (int(user_id),),
        )
        return int(row["total"]) if row else 0

    def unread_case_messages_for_admin(self, admin_id: int) -> int:
        row = self._fetch_one(
            """
            SELECT COUNT(*) AS total
            FROM case_messages m
            JOIN cases c ON c.id = m.case_id
            WHERE c.admin_id = ? AND m.is_admin_message = 0 AND m.is_read = 0
            """,
            (int(admin_id),),
        )
        return int(row["total"]) if row else 0

    def add_case_attachment(
        self,
        *,
        case_id: int,
        uploader_id: int,
        file_name: str,
        file_url: str,
        file_type: str | None = None,
        file_size: int | None = None,
        message_id: int | None = None,
    ) -> dict[str, Any]:
        attachment_id = self._insert(
            "case_attachments",
            {
                "case_id": int(case_id),
                "message_id": message_id,
                "file_name": file_name,
                "file_type": file_type,
                "file_size": file_size,
                "file_url": file_url,
                "uploader_id": int(uploader_id),
                "created_at": _utc_now(),
            },
        )
        return self._fetch_one("SELECT * FROM case_attachments WHERE id = ?", (attachment_id,))

    def list_case_attachments(self, case_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM case_attachments WHERE case_id = ? ORDER BY id", (int(case_id),)
        )

    # notifications

    def create_notification(
        self,
        *,
        user_id: int,
        type: str,
        title: str,
        message: str,
        from_user_id: int | None = None,
        event_id: int | None = None,
    ) -> dict[str, Any]:
        notification_id = self._insert(
            "notifications",
            {
                "user_id": int(user_id),
                "from_user_id": from_user_id,
                "type": type,
                "title": title,
                "message": message,
                "event_id": event_id,
                "is_read": False,
                "created_at": _utc_now(),
            },
        )
        return self._fetch_one("SELECT * FROM notifications WHERE id = ?", (notification_id,))

    def list_notifications(self, user_id: int, limit: int = 50) -> list[dict[str, Any]]:
        return self._fetch_all(
            "SELECT * FROM notifications WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (int(user_id), max(1, int(limit))),
        )

    def unread_notification_count(self, user_id: int) -> int:
        row = self._fetch_one(
            "SELECT COUNT(*) AS total FROM notifications WHERE user_id = ? AND is_read = 0",
            (int(user_id),),
        )
        return int(row["total"]) if row else 0

    def mark_notification_read(self, notification_id: int, user_id: int) -> bool:
        return (
            self._execute(
                "UPDATE notifications SET is_read = 1 WHERE id = ? AND user_id = ?",
                (int(notification_id), int(user_id)),
            )
            > 0
        )

    def mark_all_notifications_read(self, user_id: int) -> int:
        return self._execute(
            "UPDATE notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0", (int(user_id),)
        )

    # admin agreements

    def create_agreement(self, *, admin_id: int, user_id: int, **fields: Any) -> dict[str, Any]:
        now = _utc_now()
        values = {k: v for k, v in fields.items() if k in AGREEMENT_FIELDS}
        values.update(
            {
                "admin_id": int(admin_id),
                "user_id": int(user_id),
                "created_at": now,
                "updated_at": now,
            }
        )
        return self.get_agreement(self._insert("admin_agreements", values))

    def get_agreement(self, agreement_id: int) -> dict[str, Any] | None:
        return self._fetch_one(
            """
            SELECT a.*, u.name AS user_name, ad.name AS admin_name
            FROM admin_agreements a
            LEFT JOIN users u ON u.id = a.user_id
            LEFT JOIN users ad ON ad.id = a.admin_id
            WHERE a.id = ?
            """,
            (int(agreement_id),),
        )

    def list_agreements(self, admin_id: int | None = None, user_id: int | None = None) -> list[dict[str, Any]]:
        sql = """
            SELECT a.*, u.name AS user_name, ad.name AS admin_name
            FROM admin_agreements a
            LEFT JOIN users u ON u.id = a.user_id
            LEFT JOIN users ad ON ad.id = a.admin_id
            WHERE 1 = 1
        """
        params: list[Any] = []
        if admin_id is not None:
            sql += " AND a.admin_id = ?"
            params.append(int(admin_id))
        if user_id is not None:
            sql += " AND a.user_id = ?"
            params.append(int(user_id))
        return self._fetch_all(sql + " ORDER BY a.meeting_date DESC, a.id DESC", tuple(params))

    def update_agreement(self, agreement_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("admin_agreements", "id", int(agreement_id), fields, AGREEMENT_FIELDS, touch=True)
        return self.get_agreement(agreement_id)

    def delete_agreement(self, agreement_id: int) -> bool:
        agreement_id = int(agreement_id)
        with self._lock:
            with self._connect() as conn:
                conn.execute("DELETE FROM agreement_notes WHERE agreement_id = ?", (agreement_id,))
                cursor = conn.execute("DELETE FROM admin_agreements WHERE id = ?", (agreement_id,))
                conn.commit()
                return cursor.rowcount > 0

    def create_agreement_note(
        self, agreement_id: int, author_id: int, content: str, is_private: bool = False
    ) -> dict[str, Any]:
        now = _utc_now()
        note_id = self._insert(
            "agreement_notes",
            {
                "agreement_id": int(agreement_id),
                "author_id": int(author_id),
                "content": content,
                "is_private": is_private,
                "created_at": now,
                "updated_at": now,
            },
        )
        return self.get_agreement_note(note_id)

    def get_agreement_note(self, note_id: int) -> dict[str, Any] | None:
        return self._fetch_one(
            """
            SELECT n.*, u.name AS author_name, u.is_admin AS author_is_admin
            FROM agreement_notes n
            LEFT JOIN users u ON u.id = n.author_id
            WHERE n.id = ?
            """,
            (int(note_id),),
        )

    def list_agreement_notes(self, agreement_id: int, include_private: bool = False) -> list[dict[str, Any]]:
        sql = """
            SELECT n.*, u.name AS author_name, u.is_admin AS author_is_admin
            FROM agreement_notes n
            LEFT JOIN users u ON u.id = n.author_id
            WHERE n.agreement_id = ?
        """
        if not include_private:
            sql += " AND n.is_private = 0"
        return self._fetch_all(sql + " ORDER BY n.created_at DESC, n.id DESC", (int(agreement_id),))

    def update_agreement_note(self, note_id: int, **fields: Any) -> dict[str, Any] | None:
        self._update("agreement_notes", "id", int(note_id), fields, AGREEMENT_NOTE_FIELDS, touch=True)
        return self.get_agreement_note(note_id)

    def delete_agreement_note(self, note_id: int) -> bool:
        return self._execute("DELETE FROM agreement_notes WHERE id = ?", (int(note_id),)) > 0

    # collaborative events

    def add_collaborator(self, event_id: int, user_id: int, role: str = "guest") -> dict[str, Any]:
        self._execute(
            """
            INSERT INTO event_collaborators(event_id, user_id, role, joined_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(event_id, user_id) DO NOTHING
            """,
            (int(event_id), int(user_id), role, _utc_now()),
        )
        return self.get_collaborator(event_id, user_id)

    def get_collaborator(self, event_id: int, user_id: int) -> dict[str, Any] | None:
        return self._fetch_one(
            "SELECT * FROM event_collaborators WHERE event_id = ? AND user_id = ?", (int(event_id), int(user_id))
        )

    def list_collaborators(self, event_id: int) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT c.*, u.name AS name, u.username AS username
            FROM event_collaborators c
            LEFT JOIN users u ON u.id = c.user_id
            WHERE c.event_id = ?
            ORDER BY c.joined_at, c.id
            """,
            (int(event_id),),
        )

    def remove_collaborator(self, event_id: int, user_id: int) -> bool:
        return (
            self._execute(
                "DELETE FROM event_collaborators WHERE event_id = ? AND user_id = ?", (int(event_id), int(user_id))
            )
            > 0
        )

    def list_collaborative_events(self, user_id: int) -> list[tuple[EventRecord, str]]:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute(
                    """
                    SELECT e.*, c.role AS collaborator_role
                    FROM events e
                    JOIN event_collaborators c ON c.event_id = e.id
                    WHERE c.user_id = ? AND e.is_collaborative = 1
                    ORDER BY e.start_time, e.id
                    """,
                    (int(user_id),),
                ).fetchall()
        result = []
        for item in _rows(rows):
            role = item.pop("collaborator_role")
            result.append((EventRecord.from_row(item), role))
        return result

    def create_suggestion(
        self,
        *,
        event_id: int,
        suggested_by: int,
        type: str,
        original_value: str | None,
        suggested_value: str,
        message: str | None = None,
    ) -> dict[str, Any]:
        now = _utc_now()
        suggestion_id = self._insert(
            "event_suggestions",
            {
                "event_id": int(event_id),
                "suggested_by": int(suggested_by),
                "type": type,
                "original_value": original_value,
                "suggested_value": suggested_value,
                "status": "pending",
                "message": message,
                "created_at": now,
                "updated_at": now,
            },
        )
        return self.get_suggestion(suggestion_id)

    def get_suggestion(self, suggestion_id: int) -> dict[str, Any] | None:
        return self._fetch_one(
            """
            SELECT s.*, u.name AS suggested_by_name
            FROM event_suggestions s
            LEFT JOIN users u ON u.id = s.suggested_by
            WHERE s.id = ?
            """,
            (int(suggestion_id),),
        )

    def list_suggestions(self, event_id: int, status: str | None = None) -> list[dict[str, Any]]:
        sql = """
            SELECT s.*, u.name AS suggested_by_name
            FROM event_suggestions s
            LEFT JOIN users u ON u.id = s.suggested_by
            WHERE s.event_id = ?
        """
        params: list[Any] = [int(event_id)]
        if status is not None:
            sql += " AND s.status = ?"
            params.append(status)
        return self._fetch_all(sql + " ORDER BY s.created_at DESC, s.id DESC", tuple(params))

    def resolve_suggestion(self, suggestion_id: int, *, status: str, resolved_by: int) -> dict[str, Any] | None:
        now = _utc_now()
        self._execute(
            """
            UPDATE event_suggestions
            SET status = ?, resolved_by = ?, resolved_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (status, int(resolved_by), now, now, int(suggestion_id)),
        )
        return self.get_suggestion(suggestion_id)

    # backups

    def record_backup(self, filename: str, *, size: int, is_automatic: bool, summary: dict[str, int]) -> dict[str, Any]:
        backup_id = self._insert(
            "backups",
            {
                "filename": filename,
                "created_at": _utc_now(),
                "is_automatic": is_automatic,
                "size": int(size),
                "summary_json": json.dumps(summary),
            },
        )
        return self._fetch_one("SELECT * FROM backups WHERE id = ?", (backup_id,))

    def list_backups(self) -> list[dict[str, Any]]:
        return self._fetch_all("SELECT * FROM backups ORDER BY created_at DESC, id DESC")

    def delete_backup(self, filename: str) -> bool:
        return self._execute("DELETE FROM backups WHERE filename = ?", (filename,)) > 0

    def dump_tables(self, tables: Iterable[str]) -> dict[str, list[dict[str, Any]]]:
        data: dict[str, list[dict[str, Any]]] = {}
        with self._lock:
            with self._connect() as conn:
                for table in tables:
                    rows = conn.execute(f"SELECT * FROM {table} ORDER BY id").fetchall()  # nosec B608
                    data[table] = [dict(row) for row in rows]
        return data

    def replace_tables(self, data: dict[str, list[dict[str, Any]]]) -> dict[str, int]:
        """Replace the given tables with raw rows in one transaction.

        Columns the schema does not know are dropped. Row ids are kept.
        """
        counts: dict[str, int] = {}
        with self._lock:
            with self._connect() as conn:
                try:
                    for table, rows in data.items():
                        columns = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
                        if not columns:
                            raise ValueError(f"unknown table {table!r}")
                        conn.execute(f"DELETE FROM {table}")  # nosec B608
                        for row in rows:
                            values = {k: v for k, v in row.items() if k in columns}
                            if not values:
                                continue
                            names = ", ".join(values)
                            placeholders = ", ".join("?" for _ in values)
                            conn.execute(
                                f"INSERT INTO {table}({names}) VALUES ({placeholders})",  # nosec B608
                                tuple(values.values()),
                            )
                        counts[table] = len(rows)
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise
        return counts

    # sync bookkeeping

    def record_sync_run(
        self,
        *,
        trigger: str,
        status: str,
        message: str,
        duration_ms: int,
        changes_applied: int,
        failures: int,
    ) -> int:
        return self._insert(
            "sync_runs",
            {
                "run_at": _utc_now(),
                "trigger": trigger,
                "status": status,
                "message": message,
                "duration_ms": duration_ms,
                "changes_applied": changes_applied,
                "failures": failures,
            },
        )

    def start_sync_run(self, *, trigger: str, message: str = "running") -> int:
        return self.record_sync_run(
            trigger=trigger,
            status="running",
            message=message,
            duration_ms=0,
            changes_applied=0,
            failures=0,
        )

    def finish_sync_run(
        self,
        *,
        run_id: int,
        status: str,
        message: str,
        duration_ms: int,
        changes_applied: int,
        failures: int,
    ) -> None:
        self._execute(
            """
            UPDATE sync_runs
            SET status = ?, message = ?, duration_ms = ?, changes_applied = ?, failures = ?
            WHERE id = ?
            """,
            (str(status), str(message), int(duration_ms), int(changes_applied), int(failures), int(run_id)),
        )

    def recent_sync_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT id, run_at, trigger, status, message, duration_ms, changes_applied, failures
            FROM sync_runs
            ORDER BY id DESC
            LIMIT ?
            """,
            (max(1, limit),),
        )

    def get_sync_run(self, run_id: int) -> dict[str, Any] | None:
        return self._fetch_one("SELECT * FROM sync_runs WHERE id = ?", (int(run_id),))

    def record_audit_event(
        self,
        *,
        scope: str,
        ref: str,
        action: str,
        details: dict[str, Any],
        run_id: int | None = None,
    ) -> None:
        self._insert(
            "audit_events",
            {
                "run_id": run_id,
                "created_at": _utc_now(),
                "scope": scope,
                "ref": ref,
                "action": action,
                "details_json": json.dumps(details, ensure_ascii=False, default=str),
            },
        )

    def recent_audit_events(self, limit: int = 100, run_id: int | None = None) -> list[dict[str, Any]]:
        if run_id is None:
            return self._fetch_all(
                """
                SELECT id, run_id, created_at, scope, ref, action, details_json
                FROM audit_events
                ORDER BY id DESC
                LIMIT ?
                """,
                (max(1, limit),),
            )
        return self._fetch_all(
            """
            SELECT id, run_id, created_at, scope, ref, action, details_json
            FROM audit_events
            WHERE run_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (int(run_id), max(1, limit)),
        )

    def set_meta(self, key: str, value: str) -> None:
        self._execute(
            """
            INSERT INTO app_meta(key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (str(key), str(value), _utc_now()),
        )

    def get_meta(self, key: str) -> str | None:
        row = self._fetch_one("SELECT value FROM app_meta WHERE key = ?", (str(key),))
        if row is None:
            return None
        return str(row["value"])
