import unittest
from datetime import date, datetime, timezone
from decimal import Decimal

from smarthjem.models import EventRecord, local_datetime
from smarthjem.payouts import (
    PayoutValidationError,
    calculate_rental_days,
    normalize_payout,
    parse_amount,
)


def _stay(first: date, last: date, source_type: str = "beds24") -> EventRecord:
    return EventRecord(
        user_id=1,
        title="Guest",
        start=local_datetime(first, 14, "Europe/Oslo"),
        end=local_datetime(last, 11, "Europe/Oslo"),
        source={"type": source_type, "uid": f"{source_type}-{first.isoformat()}"},
    )


class AmountTests(unittest.TestCase):
    def test_parse_amount(self) -> None:
        self.assertEqual(parse_amount("1250,5"), Decimal("1250.50"))
        self.assertEqual(parse_amount(99), Decimal("99.00"))
        for bad in ("abc", "NaN", None):
            with self.assertRaises(PayoutValidationError):
                parse_amount(bad)


class NormalizeTests(unittest.TestCase):
    def test_full_payload_defaults(self) -> None:
        values = normalize_payout({"month": 3, "year": 2025, "amount": "1000"})
        self.assertEqual(values["amount"], "1000.00")
        self.assertEqual(values["status"], "pending")
        self.assertEqual(values["currency"], "NOK")

    def test_partial_payload_only_touches_given_fields(self) -> None:
        self.assertEqual(normalize_payout({"status": "PAID"}, partial=True), {"status": "paid"})

    def test_validation(self) -> None:
        with self.assertRaises(PayoutValidationError):
            normalize_payout({"month": 13, "year": 2025, "amount": 1})
        with self.assertRaises(PayoutValidationError):
            normalize_payout({"month": 1, "year": 2019, "amount": 1})
        with self.assertRaises(PayoutValidationError):
            normalize_payout({"month": 1, "year": 2025, "amount": 1, "status": "lost"})
        with self.assertRaises(PayoutValidationError):
            normalize_payout({"year": 2025}, partial=True)


class RentalDaysTests(unittest.TestCase):
    def test_counts_unique_nights_in_month(self) -> None:
        events = [
            _stay(date(2025, 7, 1), date(2025, 7, 4)),
            _stay(date(2025, 7, 3), date(2025, 7, 5)),
            _stay(date(2025, 6, 28), date(2025, 7, 2)),
            _stay(date(2025, 7, 10), date(2025, 7, 12), source_type="ical"),
        ]
        result = calculate_rental_days(events, 2025, 7, "Europe/Oslo")
        self.assertEqual(result["totalBookings"], 2)
        self.assertEqual(result["rentalDays"], 4)
        self.assertIn("07/2025", result["message"])

    def test_december_boundary(self) -> None:
        event = EventRecord(
            user_id=1,
            title="Guest",
            start=datetime(2025, 12, 31, 13, tzinfo=timezone.utc),
            end=datetime(2026, 1, 2, 10, tzinfo=timezone.utc),
            source={"type": "beds24"},
        )
        self.assertEqual(calculate_rental_days([event], 2025, 12)["rentalDays"], 2)


if __name__ == "__main__":
    unittest.main()
