from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DEFAULT_EVENT_COLOR = "#ef4444"
DEFAULT_FEED_COLOR = "#8b5cf6"
DEFAULT_USER_AGENT = "Smart-Hjem-Calendar/1.0 (https://smarthjem.as)"


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).astimezone(timezone.utc).isoformat()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def resolve_timezone(name: str) -> ZoneInfo | timezone:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def local_datetime(day: date, hour: int, tz_name: str) -> datetime:
    return datetime.combine(day, time(hour=hour), tzinfo=resolve_timezone(tz_name))


def _clamp_int(value: Any, default: int, minimum: int, maximum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    number = max(minimum, number)
    if maximum is not None:
        number = min(maximum, number)
    return number


@dataclass
class AuthConfig:
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    token_hours: int = 24
    reset_token_hours: int = 24
    min_password_length: int = 6

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AuthConfig":
        data = data or {}
        return cls(
            jwt_secret=str(data.get("jwt_secret", "") or "").strip(),
            jwt_algorithm=str(data.get("jwt_algorithm", "HS256") or "HS256").strip() or "HS256",
            token_hours=_clamp_int(data.get("token_hours", 24), 24, 1),
            reset_token_hours=_clamp_int(data.get("reset_token_hours", 24), 24, 1),
            min_password_length=_clamp_int(data.get("min_password_length", 6), 6, 1),
        )


@dataclass
class SyncConfig:
    background_enabled: bool = True
    interval_seconds: int = 60
    past_days: int = 30
    future_days: int = 360
    preservation_years: int = 3
    user_delay_seconds: float = 2.0
    delta_buffer_minutes: int = 10
    full_sync_hours: int = 24
    timezone: str = "Europe/Oslo"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        try:
            delay = max(0.0, float(data.get("user_delay_seconds", 2.0)))
        except (TypeError, ValueError):
            delay = 2.0
        return cls(
            background_enabled=bool(data.get("background_enabled", True)),
            interval_seconds=_clamp_int(data.get("interval_seconds", 60), 60, 30),
            past_days=_clamp_int(data.get("past_days", 30), 30, 0),
            future_days=_clamp_int(data.get("future_days", 360), 360, 1),
            preservation_years=_clamp_int(data.get("preservation_years", 3), 3, 0),
            user_delay_seconds=delay,
            delta_buffer_minutes=_clamp_int(data.get("delta_buffer_minutes", 10), 10, 0),
            full_sync_hours=_clamp_int(data.get("full_sync_hours", 24), 24, 1),
            timezone=str(data.get("timezone", "Europe/Oslo") or "").strip() or "Europe/Oslo",
        )


@dataclass
class Beds24Config:
    api_base_url: str = "https://beds24.com/api/v2"
    timeout_seconds: int = 30
    checkin_hour: int = 14
    checkout_hour: int = 11
    refresh_margin_minutes: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Beds24Config":
        data = data or {}
        return cls(
            api_base_url=str(data.get("api_base_url", "") or "").strip().rstrip("/")
            or "https://beds24.com/api/v2",
            timeout_seconds=_clamp_int(data.get("timeout_seconds", 30), 30, 1),
            checkin_hour=_clamp_int(data.get("checkin_hour", 14), 14, 0, 23),
            checkout_hour=_clamp_int(data.get("checkout_hour", 11), 11, 0, 23),
            refresh_margin_minutes=_clamp_int(data.get("refresh_margin_minutes", 5), 5, 0),
        )


@dataclass
class IcalConfig:
    user_agent: str = DEFAULT_USER_AGENT
    timeout_seconds: int = 30
    max_retries: int = 3
    retry_wait_seconds: int = 120
    max_retry_wait_seconds: int = 300

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "IcalConfig":
        data = data or {}
        return cls(
            user_agent=str(data.get("user_agent", "") or "").strip() or DEFAULT_USER_AGENT,
            timeout_seconds=_clamp_int(data.get("timeout_seconds", 30), 30, 1),
            max_retries=_clamp_int(data.get("max_retries", 3), 3, 1),
            retry_wait_seconds=_clamp_int(data.get("retry_wait_seconds", 120), 120, 0),
            max_retry_wait_seconds=_clamp_int(data.get("max_retry_wait_seconds", 300), 300, 0),
        )


@dataclass
class SMTPConfig:
    host: str = ""
    port: int = 465
    username: str = ""
    password: str = ""
    from_email: str = ""
    from_name: str = "Smart Hjem"
    use_ssl: bool = True
    app_url: str = "http://localhost:8080"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SMTPConfig":
        data = data or {}
        return cls(
            host=str(data.get("host", "") or "").strip(),
            port=_clamp_int(data.get("port", 465), 465, 1, 65535),
            username=str(data.get("username", "") or "").strip(),
            password=str(data.get("password", "") or "").strip(),
            from_email=str(data.get("from_email", "") or "").strip(),
            from_name=str(data.get("from_name", "Smart Hjem") or "").strip() or "Smart Hjem",
            use_ssl=bool(data.get("use_ssl", True)),
            app_url=str(data.get("app_url", "") or "").strip().rstrip("/") or "http://localhost:8080",
        )

    def is_configured(self) -> bool:
        return bool(self.host and self.from_email)


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        level = str(data.get("level", "INFO") or "").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            level = "INFO"
        return cls(level=level)


@dataclass
class BackupConfig:
    enabled: bool = True
    directory: str = ""
    interval_hours: int = 24
    max_backups: int = 10

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "BackupConfig":
        data = data or {}
        return cls(
            enabled=bool(data.get("enabled", True)),
            directory=str(data.get("directory", "") or "").strip(),
            interval_hours=_clamp_int(data.get("interval_hours", 24), 24, 1),
            max_backups=_clamp_int(data.get("max_backups", 10), 10, 1),
        )


@dataclass
class AppConfig:
    auth: AuthConfig = field(default_factory=AuthConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    beds24: Beds24Config = field(default_factory=Beds24Config)
    ical: IcalConfig = field(default_factory=IcalConfig)
    smtp: SMTPConfig = field(default_factory=SMTPConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            auth=AuthConfig.from_dict(data.get("auth")),
            sync=SyncConfig.from_dict(data.get("sync")),
            beds24=Beds24Config.from_dict(data.get("beds24")),
            ical=IcalConfig.from_dict(data.get("ical")),
            smtp=SMTPConfig.from_dict(data.get("smtp")),
            logging=LoggingConfig.from_dict(data.get("logging")),
            backup=BackupConfig.from_dict(data.get("backup")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EventRecord:
    """One row of the events table, shared by local, iCal and Beds24 events."""

    user_id: int
    title: str
    start: datetime
    end: datetime | None = None
    description: str = ""
    color: str = DEFAULT_EVENT_COLOR
    all_day: bool = False
    location: str = ""
    is_private: bool = False
    csv_protected: bool = False
    source: dict[str, Any] | None = None
    admin_color_override: str | None = None
    is_collaborative: bool = False
    collaboration_code: str | None = None
    id: int | None = None

    @property
    def source_type(self) -> str:
        return str((self.source or {}).get("type", "") or "")

    @property
    def source_uid(self) -> str:
        return str((self.source or {}).get("uid", "") or "")

    @property
    def source_feed_id(self) -> int | None:
        value = (self.source or {}).get("feed_id")
        return int(value) if value not in (None, "") else None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "EventRecord":
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            title=str(row.get("title") or ""),
            description=str(row.get("description") or ""),
            start=parse_iso_datetime(row["start_time"]),
            end=parse_iso_datetime(row.get("end_time")),
            color=str(row.get("color") or DEFAULT_EVENT_COLOR),
            all_day=bool(row.get("all_day")),
            location=str(row.get("location") or ""),
            is_private=bool(row.get("is_private")),
            csv_protected=bool(row.get("csv_protected")),
            source=row.get("source"),
            admin_color_override=row.get("admin_color_override"),
            is_collaborative=bool(row.get("is_collaborative")),
            collaboration_code=row.get("collaboration_code"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "start_time": serialize_datetime(self.start),
            "end_time": serialize_datetime(self.end),
            "color": self.color,
            "admin_color_override": self.admin_color_override,
            "all_day": self.all_day,
            "location": self.location,
            "is_private": self.is_private,
            "csv_protected": self.csv_protected,
            "source": self.source,
            "is_collaborative": self.is_collaborative,
            "collaboration_code": self.collaboration_code,
        }


@dataclass
class IcalFeed:
    id: int
    user_id: int
    name: str
    url: str
    color: str = DEFAULT_FEED_COLOR
    enabled: bool = True
    feed_type: str = "import"
    last_synced: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "IcalFeed":
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            name=str(row.get("name") or ""),
            url=str(row.get("url") or ""),
            color=str(row.get("color") or DEFAULT_FEED_COLOR),
            enabled=bool(row.get("enabled")),
            feed_type=str(row.get("feed_type") or "import"),
            last_synced=parse_iso_datetime(row.get("last_synced")),
        )


@dataclass
class Beds24Settings:
    user_id: int
    api_key: str = ""
    refresh_token: str = ""
    token_expiry: datetime | None = None
    scopes: list[str] = field(default_factory=list)
    prop_id: str = ""
    sync_enabled: bool = True
    sync_future_days: int = 365
    last_sync: datetime | None = None
    last_full_sync: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Beds24Settings":
        scopes = row.get("scopes") or []
        if isinstance(scopes, str):
            scopes = [x.strip() for x in scopes.split(",") if x.strip()]
        return cls(
            user_id=int(row["user_id"]),
            api_key=str(row.get("api_key") or ""),
            refresh_token=str(row.get("refresh_token") or ""),
            token_expiry=parse_iso_datetime(row.get("token_expiry")),
            scopes=list(scopes),
            prop_id=str(row.get("prop_id") or "").strip(),
            sync_enabled=bool(row.get("sync_enabled", True)),
            sync_future_days=_clamp_int(row.get("sync_future_days", 365), 365, 1),
            last_sync=parse_iso_datetime(row.get("last_sync")),
            last_full_sync=parse_iso_datetime(row.get("last_full_sync")),
        )

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "has_api_key": bool(self.api_key),
            "has_refresh_token": bool(self.refresh_token),
            "token_expiry": serialize_datetime(self.token_expiry),
            "scopes": list(self.scopes),
            "prop_id": self.prop_id,
            "sync_enabled": self.sync_enabled,
            "sync_future_days": self.sync_future_days,
            "last_sync": serialize_datetime(self.last_sync),
            "last_full_sync": serialize_datetime(self.last_full_sync),
        }


@dataclass
class FeedSyncStats:
    feed_id: int
    created: int = 0
    updated: int = 0
    deleted: int = 0
    protected: int = 0
    skipped: int = 0

    @property
    def changes(self) -> int:
        return self.created + self.updated + self.deleted

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["changes"] = self.changes
        return payload


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    changes_applied: int
    failures: int
    trigger: str
    run_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "changes_applied": self.changes_applied,
            "failures": self.failures,
            "trigger": self.trigger,
            "run_at": serialize_datetime(self.run_at),
        }


def default_app_config() -> AppConfig:
    return AppConfig()


def sync_window(now: datetime, past_days: int, future_days: int) -> tuple[datetime, datetime]:
    now_utc = _ensure_tz(now).astimezone(timezone.utc)
    return now_utc - timedelta(days=max(0, past_days)), now_utc + timedelta(days=max(1, future_days))


def preservation_threshold(now: datetime, years: int) -> datetime:
    return _ensure_tz(now).astimezone(timezone.utc) - timedelta(days=365 * max(0, years))
