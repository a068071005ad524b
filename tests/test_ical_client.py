import unittest
from datetime import date, datetime, timezone
from unittest import mock

import requests
from icalendar import Calendar

from smarthjem.ical_client import (
    FeedFetchError,
    FeedParseError,
    IcalFeedClient,
    build_calendar,
    describe_fetch_error,
    is_google_calendar_url,
    parse_calendar,
    validate_feed_url,
)
from smarthjem.models import EventRecord, IcalConfig

SAMPLE_ICS = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//Test//EN
BEGIN:VEVENT
UID:booking-1@example.com
SUMMARY:Kari Nordmann
DTSTART;VALUE=DATE:20250701
DTEND;VALUE=DATE:20250704
DESCRIPTION:Three nights
END:VEVENT
BEGIN:VEVENT
UID:meeting-2@example.com
SUMMARY:Cleaning
DTSTART:20250705T100000Z
DTEND:20250705T120000Z
LOCATION:Hytta
END:VEVENT
BEGIN:VEVENT
UID:no-summary@example.com
DTSTART:20250706T100000Z
END:VEVENT
END:VCALENDAR
"""


def _response(status_code: int, text: str = "") -> mock.Mock:
    response = mock.Mock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    response.text = text
    return response


class ParseCalendarTests(unittest.TestCase):
    def test_parses_events_and_skips_incomplete(self) -> None:
        events = parse_calendar(SAMPLE_ICS, "UTC")
        self.assertEqual([e.uid for e in events], ["booking-1@example.com", "meeting-2@example.com"])
        stay, cleaning = events
        self.assertTrue(stay.all_day)
        self.assertEqual(stay.start, datetime(2025, 7, 1, tzinfo=timezone.utc))
        self.assertEqual(stay.end, datetime(2025, 7, 4, tzinfo=timezone.utc))
        self.assertFalse(cleaning.all_day)
        self.assertEqual(cleaning.original_data["location"], "Hytta")

    def test_non_calendar_raises_parse_error(self) -> None:
        with self.assertRaises(FeedParseError):
            parse_calendar("BEGIN:VEVENT\r\nUID:x\r\nEND:VEVENT\r\n")


class FeedUrlTests(unittest.TestCase):
    def test_validate_feed_url(self) -> None:
        self.assertEqual(validate_feed_url(" https://example.com/a.ics "), "https://example.com/a.ics")
        with self.assertRaises(ValueError):
            validate_feed_url("webcal://example.com/a.ics")

    def test_google_detection(self) -> None:
        self.assertTrue(is_google_calendar_url("https://calendar.google.com/calendar/ical/x/basic.ics"))
        self.assertFalse(is_google_calendar_url("https://beds24.com/ical/x.ics"))

    def test_describe_fetch_error(self) -> None:
        self.assertIn("404", describe_fetch_error(FeedFetchError("nope", status_code=404)))
        self.assertIn("resolve", describe_fetch_error(requests.ConnectionError("Name or service not known")))


class IcalFeedClientTests(unittest.TestCase):
    def test_retries_on_503_with_backoff(self) -> None:
        session = mock.Mock()
        session.get.side_effect = [_response(503), _response(200, SAMPLE_ICS)]
        sleeps: list[float] = []
        client = IcalFeedClient(IcalConfig(), session=session, sleep=sleeps.append)

        events = client.fetch_events("https://example.com/a.ics")

        self.assertEqual(len(events), 2)
        self.assertEqual(sleeps, [120])
        headers = session.get.call_args.kwargs["headers"]
        self.assertIn("Smart-Hjem", headers["User-Agent"])

    def test_gives_up_after_max_retries(self) -> None:
        session = mock.Mock()
        session.get.return_value = _response(503)
        client = IcalFeedClient(IcalConfig(max_retries=2), session=session, sleep=lambda _: None)
        with self.assertRaises(FeedFetchError) as ctx:
            client.fetch("https://example.com/a.ics")
        self.assertEqual(ctx.exception.status_code, 503)
        self.assertEqual(session.get.call_count, 2)

    def test_validate_reports_http_errors(self) -> None:
        session = mock.Mock()
        session.get.return_value = _response(404)
        ok, message, count = IcalFeedClient(IcalConfig(), session=session).validate("https://example.com/a.ics")
        self.assertFalse(ok)
        self.assertIn("404", message)
        self.assertEqual(count, 0)


class BuildCalendarTests(unittest.TestCase):
    def test_export_contains_events(self) -> None:
        events = [
            EventRecord(
                id=1,
                user_id=1,
                title="Eier",
                start=datetime(2025, 7, 1, 12, tzinfo=timezone.utc),
                end=datetime(2025, 7, 3, 9, tzinfo=timezone.utc),
                all_day=True,
            ),
            EventRecord(id=2, user_id=1, title="Service", start=datetime(2025, 7, 5, 10, tzinfo=timezone.utc)),
        ]
        calendar_obj = Calendar.from_ical(build_calendar(events, "Test", "Europe/Oslo"))
        vevents = calendar_obj.walk("VEVENT")
        self.assertEqual(len(vevents), 2)
        self.assertEqual(str(calendar_obj.get("X-WR-CALNAME")), "Test")
        self.assertEqual(vevents[0].decoded("DTSTART"), date(2025, 7, 1))
        self.assertEqual(str(vevents[1].get("UID")), "smarthjem-2@smarthjem.as")


if __name__ == "__main__":
    unittest.main()
