from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from smarthjem.models import EventRecord, local_datetime

logger = logging.getLogger(__name__)


GENERIC_GUEST_NAME = "Guest"
BOOKING_ID_FIELDS = ("id", "bookId", "bookingId", "booking_id")
ARRIVAL_FIELDS = ("arrival", "firstNight", "arrivalDate")
DEPARTURE_FIELDS = ("departure", "departureDate")

STATUS_COLORS = {
    "new": "#10b981",
    "confirmed": "#3b82f6",
    "cancelled": "#ef4444",
    "black": "#000000",
    "request": "#f59e0b",
    "inquiry": "#8b5cf6",
}
DEFAULT_STATUS_COLOR = "#6b7280"

CUSTOM_NAME_PATTERN = re.compile(r"^[A-Za-zÆØÅæøå\s\-\.]{4,50}$")
GENERIC_NAME_TERMS = ("guest", "customer", "user", "client")
COMMENT_NAME_PATTERNS = (
    re.compile(r"guest:\s*([A-ZÆØÅ][^\n\r*]+)", re.IGNORECASE),
    re.compile(r"name:\s*([A-ZÆØÅ][^\n\r*]+)", re.IGNORECASE),
    re.compile(r"navn:\s*([A-ZÆØÅ][^\n\r*]+)", re.IGNORECASE),
    re.compile(r"gjest:\s*([A-ZÆØÅ][^\n\r*]+)", re.IGNORECASE),
    re.compile(r"([A-Za-z]+(?:\.[A-Za-z]+)+)@"),
    re.compile(r"\b([A-ZÆØÅ][a-zæøå]{2,15}\s+[A-ZÆØÅ][a-zæøå]{2,15})\b"),
)
HOTEL_TERM_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"non smoking",
        r"smoking requested",
        r"pet allowed",
        r"child aged",
        r"adult",
        r"breakfast",
        r"parking",
        r"wifi",
        r"reservation",
        r"booking",
        r"payment",
        r"arriving",
        r"departing",
        r"pre.*paid",
        r"number of",
        r"booked rate",
        r"view booking",
    )
)
ECHO_TITLE_MARKERS = ("Guest - Room", "[Calendar Export]")
ECHO_COMMENT_MARKERS = ("Generated by Smart Hjem Calendar", "[AUTO-CREATED]")

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
EMAIL_LINE_PATTERN = re.compile(r"Email:\s*[^\n]*", re.IGNORECASE)
BLANK_LINES_PATTERN = re.compile(r"\n\s*\n\s*\n")
ROOM_ID_PATTERN = re.compile(r"roomid=(\d+)", re.IGNORECASE)
ROOM_TITLE_PATTERN = re.compile(r"Room (\d+)")
BEDS24_ICAL_UID_PATTERN = re.compile(r"-b(\d+)@beds24\.com$")


def sanitize_description(text: str | None) -> str:
    if not text:
        return ""
    sanitized = EMAIL_PATTERN.sub("[email removed]", text)
    sanitized = EMAIL_LINE_PATTERN.sub("", sanitized)
    sanitized = BLANK_LINES_PATTERN.sub("\n\n", sanitized)
    return sanitized.strip()


def booking_id(booking: dict[str, Any]) -> str:
    for key in BOOKING_ID_FIELDS:
        value = booking.get(key)
        if value not in (None, ""):
            return str(value)
    return ""


def status_color(status: str | None) -> str:
    return STATUS_COLORS.get(str(status or "").strip().lower(), DEFAULT_STATUS_COLOR)


def is_echo_booking(booking: dict[str, Any]) -> bool:
    """Bookings created from our own exported calendar must not come back in."""
    title = str(booking.get("title") or booking.get("guestName") or "")
    comments = str(booking.get("comments") or "")
    if any(marker in title for marker in ECHO_TITLE_MARKERS):
        return True
    return any(marker in comments for marker in ECHO_COMMENT_MARKERS)


def _plausible_name(candidate: str) -> bool:
    return len(candidate.split()) >= 2 and 4 <= len(candidate) <= 50


def _clean_comment_name(raw: str) -> str:
    cleaned = raw.strip()
    cleaned = re.sub(r"[*.,;:]+$", "", cleaned)
    cleaned = re.sub(r"^[*.,;:]+", "", cleaned)
    return cleaned.strip()


def _name_from_comments(comments: str) -> str | None:
    for pattern in COMMENT_NAME_PATTERNS:
        match = pattern.search(comments)
        if not match:
            continue
        raw = match.group(1)
        if "@" in match.group(0):
            # local part of an e-mail address, john.smith -> John Smith
            raw = " ".join(part.capitalize() for part in raw.split("."))
        candidate = _clean_comment_name(raw)
        if candidate == GENERIC_GUEST_NAME or len(candidate) <= 3:
            continue
        if any(term.search(candidate) for term in HOTEL_TERM_PATTERNS):
            logger.debug("Skipped hotel term in booking comments")
            continue
        if _plausible_name(candidate):
            return candidate
    return None


def extract_guest_name(booking: dict[str, Any]) -> str:
    first = str(booking.get("guestFirstName") or "").strip()
    last = str(booking.get("guestName") or booking.get("lastName") or "").strip()
    name = f"{first} {last}".strip()
    if name:
        return name

    first = str(
        booking.get("firstName") or booking.get("first_name") or booking.get("guest_first_name") or ""
    ).strip()
    last = str(
        booking.get("lastName")
        or booking.get("last_name")
        or booking.get("guest_last_name")
        or booking.get("surname")
        or ""
    ).strip()
    name = f"{first} {last}".strip()
    if name:
        return name

    for index in range(1, 11):
        value = booking.get(f"custom{index}")
        if not isinstance(value, str) or len(value) <= 3:
            continue
        if not CUSTOM_NAME_PATTERN.match(value) or len(value.split()) < 2:
            continue
        if any(term in value.lower() for term in GENERIC_NAME_TERMS):
            continue
        return value.strip()

    comments = booking.get("comments")
    if isinstance(comments, str) and comments:
        found = _name_from_comments(comments)
        if found:
            return found
    return GENERIC_GUEST_NAME


def _parse_booking_date(value: Any) -> date | None:
    if value in (None, ""):
        return None
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def booking_dates(booking: dict[str, Any]) -> tuple[date, date] | None:
    arrival = None
    for key in ARRIVAL_FIELDS:
        if booking.get(key):
            arrival = _parse_booking_date(booking.get(key))
            break
    departure = None
    for key in DEPARTURE_FIELDS:
        if booking.get(key):
            departure = _parse_booking_date(booking.get(key))
            break
    if departure is None and booking.get("lastNight"):
        last_night = _parse_booking_date(booking.get("lastNight"))
        departure = last_night + timedelta(days=1) if last_night else None
    if arrival is None or departure is None:
        return None
    if departure <= arrival:
        departure = arrival + timedelta(days=1)
    return arrival, departure


@dataclass
class BookingConversion:
    booking_id: str
    event: EventRecord
    needs_name_enhancement: bool = False
    status: str = "new"


def booking_to_event(
    booking: dict[str, Any],
    *,
    user_id: int,
    timezone_name: str,
    checkin_hour: int = 14,
    checkout_hour: int = 11,
) -> BookingConversion | None:
    bid = booking_id(booking)
    dates = booking_dates(booking)
    if not bid or dates is None:
        logger.warning("Booking %s has missing or invalid dates", bid or "?")
        return None
    arrival, departure = dates

    guest_name = extract_guest_name(booking)
    status = str(booking.get("status") or "new")
    lines = [f"Booking ID: {bid}", f"Guest: {guest_name}"]
    if booking.get("guestPhone"):
        lines.append(f"Phone: {booking['guestPhone']}")
    if booking.get("numAdult") or booking.get("numChild"):
        lines.append(f"Adults: {booking.get('numAdult') or 0}, Children: {booking.get('numChild') or 0}")
    if booking.get("price"):
        lines.append(f"Price: {booking['price']} {booking.get('currency') or ''}".rstrip())

    event = EventRecord(
        user_id=user_id,
        title=guest_name,
        description=sanitize_description("\n".join(lines)),
        start=local_datetime(arrival, checkin_hour, timezone_name),
        end=local_datetime(departure, checkout_hour, timezone_name),
        color=status_color(status),
        all_day=True,
        source={
            "type": "beds24",
            "booking_id": bid,
            "property_id": str(booking.get("propertyId") or booking.get("propId") or ""),
            "room_id": str(booking.get("roomId") or ""),
            "status": status,
            "last_modified": str(booking.get("modifiedTime") or booking.get("bookingTime") or ""),
            "uid": f"beds24-{bid}",
        },
    )
    return BookingConversion(
        booking_id=bid,
        event=event,
        needs_name_enhancement=guest_name == GENERIC_GUEST_NAME,
        status=status,
    )


def booking_property_id(booking: dict[str, Any]) -> str:
    return str(booking.get("propertyId") or booking.get("propId") or "").strip()


def find_enhanced_name(event: EventRecord, candidates: Iterable[EventRecord]) -> str | None:
    """Pick a guest name from an overlapping iCal event of the same user."""
    if event.end is None:
        return None
    for candidate in candidates:
        if candidate.source_type != "ical":
            continue
        if not (event.start <= candidate.start < event.end):
            continue
        title = (candidate.title or "").strip()
        if title == GENERIC_GUEST_NAME or len(title) <= 3 or "Room " in title:
            continue
        return title
    return None


def apply_enhanced_name(event: EventRecord, name: str) -> None:
    event.title = name
    marker = f"[Name enhanced from iCal: {name}]"
    if marker not in (event.description or ""):
        event.description = f"{event.description}\n\n{marker}".strip()


def beds24_ical_booking_id(uid: str) -> str | None:
    match = BEDS24_ICAL_UID_PATTERN.search(uid or "")
    return match.group(1) if match else None


def find_duplicate(
    event: EventRecord,
    bid: str,
    existing: Iterable[EventRecord],
) -> EventRecord | None:
    """Find an event that already represents this booking, e.g. imported via iCal."""
    day = event.start.date()
    title_key = event.title.strip().lower()
    for other in existing:
        if other.source_type == "beds24":
            continue
        if other.start.date() != day:
            continue
        if other.start == event.start and other.end == event.end:
            return other
        if other.source_type == "ical" and other.source_uid.endswith(f"-b{bid}@beds24.com"):
            return other
        if f"Booking ID: {bid}" in (other.description or ""):
            return other
        if title_key and event.title != GENERIC_GUEST_NAME and other.title.strip().lower() == title_key:
            return other
    return None


def booking_changed(existing: EventRecord, incoming: EventRecord) -> bool:
    return (
        existing.title != incoming.title
        or existing.description != incoming.description
        or existing.start != incoming.start
        or existing.end != incoming.end
        or (existing.source or {}).get("status") != (incoming.source or {}).get("status")
    )


def feed_room_id(url: str) -> str | None:
    if "beds24.com" not in (url or "").lower():
        return None
    match = ROOM_ID_PATTERN.search(url)
    return match.group(1) if match else None


def room_mismatch(title: str, room_id: str | None) -> bool:
    if not room_id:
        return False
    match = ROOM_TITLE_PATTERN.search(title or "")
    return bool(match and match.group(1) != room_id)


def string_similarity(first: str, second: str) -> float:
    if first == second:
        return 1.0
    if not first or not second:
        return 0.0
    previous = list(range(len(second) + 1))
    for i, left in enumerate(first, start=1):
        current = [i]
        for j, right in enumerate(second, start=1):
            cost = 0 if left == right else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return 1 - previous[-1] / max(len(first), len(second))


def _hours_between(first: datetime | None, second: datetime | None) -> float | None:
    if first is None or second is None:
        return None
    return abs((first - second).total_seconds()) / 3600


def event_similarity(first: EventRecord, second: EventRecord) -> float:
    score = 0.0
    if first.title and second.title:
        score += string_similarity(first.title.lower(), second.title.lower()) * 3
    if first.description and second.description:
        score += string_similarity(first.description.lower(), second.description.lower()) * 2
    elif not first.description and not second.description:
        score += 2
    start_hours = _hours_between(first.start, second.start)
    if start_hours is not None:
        if start_hours == 0:
            score += 2
        elif start_hours <= 1:
            score += 1.5
        elif start_hours <= 24:
            score += 1
    end_hours = _hours_between(first.end, second.end)
    if end_hours is not None:
        if end_hours == 0:
            score += 1
        elif end_hours <= 1:
            score += 0.5
    return score / 8


@dataclass
class SimilarGroup:
    user_id: int
    similarity: float
    events: list[EventRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "similarity": round(self.similarity, 3),
            "events": [event.to_dict() for event in self.events],
        }


def group_similar_events(events: list[EventRecord], threshold: float = 0.8) -> list[SimilarGroup]:
    groups: list[SimilarGroup] = []
    for i, first in enumerate(events):
        for second in events[i + 1 :]:
            similarity = event_similarity(first, second)
            if similarity < threshold:
                continue
            group = next(
                (g for g in groups if any(e.id in {first.id, second.id} for e in g.events)),
                None,
            )
            if group is None:
                groups.append(SimilarGroup(user_id=first.user_id, similarity=similarity, events=[first, second]))
                continue
            for event in (first, second):
                if all(e.id != event.id for e in group.events):
                    group.events.append(event)
    return groups


CSV_STATUS_COLORS = {"new": "#3b82f6"}
CSV_FLAG_COLORS = {"vip": "#f59e0b"}
CSV_DEFAULT_COLOR = "#10b981"


def _parse_csv_date(value: str) -> date | None:
    text = (value or "").strip()
    for fmt in ("%Y-%m-%d", "%d.%m.%Y", "%d/%m/%Y", "%d %b %Y", "%a %d %b %Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def csv_row_to_event(
    row: dict[str, str],
    *,
    user_id: int,
    timezone_name: str,
    checkin_hour: int = 14,
    checkout_hour: int = 11,
) -> EventRecord | None:
    """Convert one row of a Beds24 booking export. Raises ValueError on bad dates."""
    number = str(row.get("Number") or "").strip()
    if not number:
        return None
    arrival = _parse_csv_date(row.get("Check In", ""))
    departure = _parse_csv_date(row.get("Check Out", ""))
    if arrival is None or departure is None:
        raise ValueError(f"invalid dates for booking {number}")
    if departure <= arrival:
        departure = arrival + timedelta(days=1)

    name = str(row.get("Full Name") or "").strip() or GENERIC_GUEST_NAME
    lines = [f"Booking ID: {number}", f"Guest: {name}"]
    if row.get("Adults") or row.get("Children"):
        lines.append(f"Adults: {row.get('Adults') or 0}, Children: {row.get('Children') or 0}")
    if row.get("Nights"):
        lines.append(f"Nights: {row['Nights']}")
    if row.get("Referrer"):
        lines.append(f"Referrer: {row['Referrer']}")
    if row.get("Status"):
        lines.append(f"Status: {row['Status']}")

    status = str(row.get("Status") or "").strip().lower()
    flag = str(row.get("Flag") or "").strip().lower()
    color = CSV_FLAG_COLORS.get(flag) or CSV_STATUS_COLORS.get(status) or CSV_DEFAULT_COLOR
    return EventRecord(
        user_id=user_id,
        title=name,
        description=sanitize_description("\n".join(lines)),
        start=local_datetime(arrival, checkin_hour, timezone_name),
        end=local_datetime(departure, checkout_hour, timezone_name),
        color=color,
        all_day=True,
        csv_protected=True,
        source={
            "type": "beds24",
            "booking_id": number,
            "status": status or "new",
            "uid": f"beds24-{number}",
            "imported_from": "csv",
        },
    )
