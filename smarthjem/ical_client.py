from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable
from urllib.parse import urlparse

import requests
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from smarthjem.models import EventRecord, IcalConfig, resolve_timezone

logger = logging.getLogger(__name__)

ACCEPT_HEADER = "text/calendar, application/ics, */*"


class FeedFetchError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeedParseError(ValueError):
    pass


@dataclass
class FeedEvent:
    uid: str
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    all_day: bool = False
    original_data: dict[str, Any] = field(default_factory=dict)


def validate_feed_url(url: str) -> str:
    text = str(url or "").strip()
    parsed = urlparse(text)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Feed URL must be an absolute http(s) URL")
    return text


def is_google_calendar_url(url: str) -> bool:
    host = urlparse(url).netloc.lower()
    return host.endswith("calendar.google.com") or host.endswith("googleusercontent.com")


def _coerce_datetime(value: Any, tz: Any) -> tuple[datetime | None, bool]:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=tz), False
        return value, False
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time(), tzinfo=tz), True
    return None, False


def parse_calendar(raw_ical: str | bytes, timezone_name: str = "UTC") -> list[FeedEvent]:
    try:
        calendar_obj = ICalendar.from_ical(raw_ical)
    except Exception as exc:
        raise FeedParseError(f"Invalid iCal data: {exc}") from exc
    if calendar_obj.name != "VCALENDAR":
        raise FeedParseError("Invalid iCal data: VCALENDAR missing")

    tz = resolve_timezone(timezone_name)
    events: list[FeedEvent] = []
    for component in calendar_obj.walk("VEVENT"):
        uid = str(component.get("UID", "")).strip()
        summary = str(component.get("SUMMARY", "")).strip()
        if not uid or not summary or component.get("DTSTART") is None:
            continue
        start, all_day = _coerce_datetime(component.decoded("DTSTART"), tz)
        if start is None:
            continue
        end = None
        if component.get("DTEND") is not None:
            end, _ = _coerce_datetime(component.decoded("DTEND"), tz)
        if end is None:
            end = start + timedelta(days=1)
        events.append(
            FeedEvent(
                uid=uid,
                summary=summary,
                start=start.astimezone(timezone.utc),
                end=end.astimezone(timezone.utc),
                description=str(component.get("DESCRIPTION", "")).strip(),
                all_day=all_day,
                original_data={
                    "location": str(component.get("LOCATION", "")).strip(),
                    "organizer": str(component.get("ORGANIZER", "")).strip(),
                    "status": str(component.get("STATUS", "")).strip(),
                },
            )
        )
    return events


def describe_fetch_error(exc: Exception) -> str:
    if isinstance(exc, FeedFetchError) and exc.status_code:
        return f"Feed server answered HTTP {exc.status_code}"
    if isinstance(exc, FeedParseError):
        return "URL does not return a valid iCal calendar"
    text = str(exc).lower()
    if "name or service not known" in text or "nodename nor servname" in text or "getaddrinfo" in text:
        return "Could not resolve the feed host"
    if "refused" in text:
        return "Connection to the feed server was refused"
    if "timed out" in text or "timeout" in text:
        return "Feed server did not answer in time"
    return f"Could not fetch feed: {exc}"


class IcalFeedClient:
    def __init__(
        self,
        config: IcalConfig,
        timezone_name: str = "UTC",
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.timezone_name = timezone_name
        self.session = session or requests.Session()
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.config.user_agent, "Accept": ACCEPT_HEADER}

    def fetch(self, url: str) -> str:
        attempts = max(1, self.config.max_retries)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.get(
                    url,
                    headers=self._headers(),
                    timeout=self.config.timeout_seconds,
                    allow_redirects=True,
                )
            except requests.RequestException as exc:
                last_error = exc
                logger.warning("Fetching feed failed (attempt %s/%s): %s", attempt, attempts, exc)
                if attempt < attempts:
                    self._sleep(attempt)
                continue

            if response.status_code == 503:
                last_error = FeedFetchError("Feed temporarily unavailable", status_code=503)
                if attempt < attempts:
                    wait = min(self.config.max_retry_wait_seconds, attempt * self.config.retry_wait_seconds)
                    logger.warning("Feed answered 503, retrying in %ss", wait)
                    self._sleep(wait)
                continue
            if not response.ok:
                raise FeedFetchError(
                    f"Feed answered HTTP {response.status_code}", status_code=response.status_code
                )
            return response.text

        if isinstance(last_error, FeedFetchError):
            raise last_error
        raise FeedFetchError(str(last_error or "Feed fetch failed"))

    def fetch_events(self, url: str) -> list[FeedEvent]:
        return parse_calendar(self.fetch(url), self.timezone_name)

    def validate(self, url: str) -> tuple[bool, str, int]:
        try:
            events = self.fetch_events(url)
        except (FeedFetchError, FeedParseError, requests.RequestException) as exc:
            return False, describe_fetch_error(exc), 0
        return True, f"Feed OK, {len(events)} events", len(events)


def _export_dt(event: EventRecord, value: datetime, tz: Any) -> date | datetime:
    if event.all_day:
        return value.astimezone(tz).date()
    return value.astimezone(timezone.utc)


def build_calendar(events: Iterable[EventRecord], name: str, timezone_name: str = "UTC") -> bytes:
    tz = resolve_timezone(timezone_name)
    calendar_obj = ICalendar()
    calendar_obj.add("PRODID", "-//Smart Hjem//Kalender//NO")
    calendar_obj.add("VERSION", "2.0")
    calendar_obj.add("CALSCALE", "GREGORIAN")
    calendar_obj.add("X-WR-CALNAME", name)
    for event in events:
        vevent = ICEvent()
        vevent.add("UID", f"smarthjem-{event.id}@smarthjem.as")
        vevent.add("SUMMARY", event.title or "")
        if event.description:
            vevent.add("DESCRIPTION", event.description)
        if event.location:
            vevent.add("LOCATION", event.location)
        vevent.add("DTSTART", _export_dt(event, event.start, tz))
        end = event.end or event.start + timedelta(days=1)
        vevent.add("DTEND", _export_dt(event, end, tz))
        vevent.add("DTSTAMP", datetime.now(timezone.utc))
        calendar_obj.add_component(vevent)
    return calendar_obj.to_ical()
