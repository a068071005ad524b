from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from smarthjem.models import EventRecord, resolve_timezone

PAYOUT_STATUSES = ("pending", "paid", "sent", "offset")
DEFAULT_CURRENCY = "NOK"
MIN_YEAR = 2020
MAX_YEAR = 2100


class PayoutValidationError(ValueError):
    pass


def parse_amount(value: Any) -> Decimal:
    try:
        amount = Decimal(str(value).strip().replace(",", "."))
    except (InvalidOperation, AttributeError) as exc:
        raise PayoutValidationError("Amount must be a decimal number") from exc
    if not amount.is_finite():
        raise PayoutValidationError("Amount must be a decimal number")
    return amount.quantize(Decimal("0.01"))


def validate_period(month: int, year: int) -> None:
    if not 1 <= int(month) <= 12:
        raise PayoutValidationError("Month must be between 1 and 12")
    if not MIN_YEAR <= int(year) <= MAX_YEAR:
        raise PayoutValidationError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}")


def validate_status(status: str) -> str:
    normalized = str(status or "").strip().lower()
    if normalized not in PAYOUT_STATUSES:
        raise PayoutValidationError(f"Status must be one of: {', '.join(PAYOUT_STATUSES)}")
    return normalized


def normalize_payout(payload: dict[str, Any], *, partial: bool = False) -> dict[str, Any]:
    """Validate and normalise a payout payload for storage."""
    values: dict[str, Any] = {}
    if not partial or "month" in payload or "year" in payload:
        month = payload.get("month")
        year = payload.get("year")
        if month is None or year is None:
            raise PayoutValidationError("Month and year are required")
        validate_period(month, year)
        values["month"] = int(month)
        values["year"] = int(year)
    if not partial or "amount" in payload:
        values["amount"] = str(parse_amount(payload.get("amount")))
    if not partial or "status" in payload:
        values["status"] = validate_status(payload.get("status") or "pending")
    if not partial or "currency" in payload:
        values["currency"] = str(payload.get("currency") or DEFAULT_CURRENCY).strip().upper() or DEFAULT_CURRENCY
    for key in ("rental_days", "paid_date", "notes"):
        if key in payload:
            values[key] = payload[key]
    return values


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    following = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return first, following


def calculate_rental_days(
    events: Iterable[EventRecord], year: int, month: int, timezone_name: str = "UTC"
) -> dict[str, Any]:
    """Count unique rented days over Beds24 bookings that start in the given month."""
    validate_period(month, year)
    tz = resolve_timezone(timezone_name)
    first, following = _month_bounds(year, month)
    days: set[date] = set()
    bookings = 0
    for event in events:
        if event.source_type != "beds24":
            continue
        start = event.start.astimezone(tz)
        if not first <= start.date() < following:
            continue
        bookings += 1
        end = (event.end or event.start + timedelta(days=1)).astimezone(tz)
        cursor = start
        while cursor < end:
            days.add(cursor.date())
            cursor += timedelta(days=1)
    return {
        "rentalDays": len(days),
        "totalBookings": bookings,
        "message": f"Fant {bookings} bookinger med {len(days)} utleiedager i {month:02d}/{year}",
    }
