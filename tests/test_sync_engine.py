import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

from smarthjem.config_manager import ConfigManager
from smarthjem.ical_client import FeedEvent, FeedFetchError
from smarthjem.models import EventRecord
from smarthjem.state_store import StateStore
from smarthjem.sync_engine import SyncEngine


def _feed_event(uid: str, summary: str, start: datetime, days: int = 2) -> FeedEvent:
    return FeedEvent(uid=uid, summary=summary, start=start, end=start + timedelta(days=days), all_day=True)


class SyncEngineTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.config_manager = ConfigManager(str(root / "config.yaml"))
        self.config_manager.update({"sync": {"timezone": "UTC", "user_delay_seconds": 0}})
        self.state_store = StateStore(str(root / "state.db"))
        self.engine = SyncEngine(self.config_manager, self.state_store, sleep=lambda _: None)
        self.user = self.state_store.create_user(username="owner@example.com", password_hash="x")
        self.soon = (datetime.now(timezone.utc) + timedelta(days=10)).replace(
            hour=0, minute=0, second=0, microsecond=0
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()


class IcalSyncTests(SyncEngineTestCase):
    def _sync(self, feed_id: int, events: list[FeedEvent]):
        with mock.patch("smarthjem.sync_engine.IcalFeedClient") as client_cls:
            client_cls.return_value.fetch_events.return_value = events
            return self.engine.sync_ical_feed(feed_id)

    def test_create_update_and_delete_missing(self) -> None:
        feed = self.state_store.create_feed(
            user_id=self.user["id"], name="Airbnb", url="https://example.com/a.ics", color="#123456"
        )
        first = self._sync(
            feed.id,
            [
                _feed_event("a", "Kari Nordmann", self.soon),
                _feed_event("b", "Ola Hansen", self.soon + timedelta(days=5)),
            ],
        )
        self.assertEqual((first.created, first.updated, first.deleted), (2, 0, 0))
        stored = self.state_store.list_feed_events(feed.id)
        self.assertEqual({e.color for e in stored}, {"#123456"})

        second = self._sync(feed.id, [_feed_event("a", "Kari N. Nordmann", self.soon)])
        self.assertEqual((second.created, second.updated, second.deleted), (0, 1, 1))
        remaining = self.state_store.list_feed_events(feed.id)
        self.assertEqual([e.title for e in remaining], ["Kari N. Nordmann"])
        self.assertIsNotNone(self.state_store.get_feed(feed.id).last_synced)

    def test_csv_protected_events_are_left_alone(self) -> None:
        feed = self.state_store.create_feed(
            user_id=self.user["id"], name="Feed", url="https://example.com/b.ics", color="#123456"
        )
        self._sync(feed.id, [_feed_event("a", "Kari Nordmann", self.soon)])
        event = self.state_store.list_feed_events(feed.id)[0]
        event.csv_protected = True
        self.state_store.save_event(event)

        stats = self._sync(feed.id, [])

        self.assertEqual(stats.deleted, 0)
        self.assertEqual(stats.protected, 1)
        self.assertEqual(len(self.state_store.list_feed_events(feed.id)), 1)

    def test_beds24_room_filter(self) -> None:
        feed = self.state_store.create_feed(
            user_id=self.user["id"],
            name="Beds24",
            url="https://beds24.com/ical/bookings.ics?roomid=5",
            color="#123456",
        )
        stats = self._sync(
            feed.id,
            [_feed_event("r5", "Booked Room 5", self.soon), _feed_event("r6", "Booked Room 6", self.soon)],
        )
        self.assertEqual(stats.created, 1)
        self.assertEqual(stats.skipped, 1)

    def test_events_outside_window_are_ignored(self) -> None:
        feed = self.state_store.create_feed(
            user_id=self.user["id"], name="Feed", url="https://example.com/c.ics", color="#123456"
        )
        stats = self._sync(feed.id, [_feed_event("old", "Old stay", self.soon - timedelta(days=400))])
        self.assertEqual(stats.created, 0)

    def test_missing_events_older_than_preservation_threshold_survive(self) -> None:
        self.config_manager.update({"sync": {"past_days": 3650, "preservation_years": 1}})
        feed = self.state_store.create_feed(
            user_id=self.user["id"], name="Feed", url="https://example.com/d.ics", color="#123456"
        )
        old_stay = self.soon - timedelta(days=2 * 365)
        recent_stay = self.soon - timedelta(days=100)
        self._sync(
            feed.id,
            [_feed_event("old", "Old stay", old_stay), _feed_event("recent", "Recent stay", recent_stay)],
        )

        stats = self._sync(feed.id, [])

        self.assertEqual(stats.deleted, 1)
        self.assertEqual([e.source_uid for e in self.state_store.list_feed_events(feed.id)], ["old"])

    def test_missing_feed_raises_lookup_error(self) -> None:
        with self.assertRaises(LookupError):
            self.engine.sync_ical_feed(999)


class Beds24SyncTests(SyncEngineTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.state_store.save_beds24_config(self.user["id"], api_key="token", prop_id="77")
        self.arrival = self.soon.date()

    def _booking(self, bid: int, **extra):
        booking = {
            "id": bid,
            "propertyId": 77,
            "arrival": self.arrival.isoformat(),
            "departure": (self.arrival + timedelta(days=3)).isoformat(),
            "status": "confirmed",
            "firstName": "Kari",
            "lastName": "Nordmann",
        }
        booking.update(extra)
        return booking

    def _sync(self, bookings, **kwargs):
        with mock.patch("smarthjem.sync_engine.Beds24Client") as client_cls:
            client = client_cls.return_value
            client.fetch_bookings.return_value = bookings
            result = self.engine.sync_beds24_user(self.user["id"], **kwargs)
        return result, client

    def test_full_sync_creates_and_skips(self) -> None:
        result, client = self._sync(
            [
                self._booking(1),
                self._booking(2, propertyId=99),
                self._booking(3, comments="[AUTO-CREATED] block"),
                "not a booking",
            ]
        )
        self.assertEqual(result["mode"], "full")
        self.assertEqual(result["created"], 1)
        self.assertEqual(result["skipped"], 3)
        self.assertIsNone(client.fetch_bookings.call_args.args[2])
        events = self.state_store.list_events(self.user["id"], source_type="beds24")
        self.assertEqual(events[0].title, "Kari Nordmann")
        self.assertEqual(events[0].source_uid, "beds24-1")

    def test_second_sync_is_delta_and_keeps_missing(self) -> None:
        self._sync([self._booking(1)])
        result, client = self._sync([])
        self.assertEqual(result["mode"], "delta")
        self.assertIsNotNone(client.fetch_bookings.call_args.args[2])
        self.assertEqual(len(self.state_store.list_events(self.user["id"], source_type="beds24")), 1)

    def test_forced_full_sync_deletes_missing(self) -> None:
        self._sync([self._booking(1)])
        result, _ = self._sync([], force_full=True)
        self.assertEqual(result["deleted"], 1)
        self.assertEqual(self.state_store.list_events(self.user["id"], source_type="beds24"), [])

    def test_full_sync_deletes_stale_beds24_ical_copies(self) -> None:
        for uid, start in (
            ("x-b1@beds24.com", self.soon),
            ("x-b9@beds24.com", self.soon + timedelta(days=20)),
            ("airbnb-2", self.soon + timedelta(days=40)),
        ):
            self.state_store.create_event(
                EventRecord(
                    user_id=self.user["id"],
                    title="Reserved",
                    start=start,
                    end=start + timedelta(days=3),
                    source={"type": "ical", "uid": uid, "feed_id": 1},
                )
            )

        result, _ = self._sync([self._booking(1)])

        self.assertEqual(result["mode"], "full")
        self.assertEqual(result["deleted"], 1)
        uids = {e.source_uid for e in self.state_store.list_events(self.user["id"], source_type="ical")}
        self.assertEqual(uids, {"x-b1@beds24.com", "airbnb-2"})

    def test_delta_sync_keeps_beds24_ical_copies(self) -> None:
        self._sync([])
        self.state_store.create_event(
            EventRecord(
                user_id=self.user["id"],
                title="Reserved",
                start=self.soon,
                end=self.soon + timedelta(days=3),
                source={"type": "ical", "uid": "x-b9@beds24.com", "feed_id": 1},
            )
        )
        result, _ = self._sync([])
        self.assertEqual(result["mode"], "delta")
        self.assertEqual(result["deleted"], 0)

    def test_changed_booking_is_updated(self) -> None:
        self._sync([self._booking(1)])
        result, _ = self._sync([self._booking(1, status="cancelled")], force_full=True)
        self.assertEqual(result["updated"], 1)
        event = self.state_store.list_events(self.user["id"], source_type="beds24")[0]
        self.assertEqual(event.color, "#ef4444")

    def test_own_blocks_are_not_imported(self) -> None:
        self.state_store.create_event(
            EventRecord(
                user_id=self.user["id"],
                title="Eier",
                start=self.soon,
                end=self.soon + timedelta(days=1),
                source={"type": "local_with_beds24", "beds24_booking_id": "555", "uid": "local-1"},
            )
        )
        result, _ = self._sync([self._booking(555)])
        self.assertEqual(result["created"], 0)
        self.assertEqual(result["skipped"], 1)

    def test_duplicate_of_ical_event_is_skipped(self) -> None:
        self.state_store.create_event(
            EventRecord(
                user_id=self.user["id"],
                title="Reserved",
                start=self.soon,
                end=self.soon + timedelta(days=3),
                source={"type": "ical", "uid": "x-b1@beds24.com", "feed_id": 1},
            )
        )
        result, _ = self._sync([self._booking(1)])
        self.assertEqual(result["created"], 0)

    def test_guest_name_enhanced_from_ical(self) -> None:
        self.state_store.create_event(
            EventRecord(
                user_id=self.user["id"],
                title="Anne Lie",
                start=self.soon + timedelta(days=1, hours=16),
                end=self.soon + timedelta(days=3),
                source={"type": "ical", "uid": "airbnb-1", "feed_id": 1},
            )
        )
        result, _ = self._sync([self._booking(1, firstName="", lastName="")])
        self.assertEqual(result["created"], 1)
        event = self.state_store.list_events(self.user["id"], source_type="beds24")[0]
        self.assertEqual(event.title, "Anne Lie")
        self.assertIn("[Name enhanced from iCal: Anne Lie]", event.description)

    def test_skipped_when_beds24_ical_feed_exists(self) -> None:
        self.state_store.create_feed(
            user_id=self.user["id"], name="B", url="https://beds24.com/ical/x.ics", color="#000000"
        )
        result, client = self._sync([self._booking(1)])
        self.assertTrue(result["skipped"])
        client.fetch_bookings.assert_not_called()

    def test_push_block_marks_event(self) -> None:
        event = self.state_store.create_event(
            EventRecord(user_id=self.user["id"], title="Eier", start=self.soon, end=self.soon)
        )
        with mock.patch("smarthjem.sync_engine.Beds24Client") as client_cls:
            client_cls.return_value.create_block.return_value = "4242"
            updated = self.engine.push_block(event)
        self.assertEqual(updated.source_type, "local_with_beds24")
        self.assertEqual(updated.source["beds24_booking_id"], "4242")

    def test_push_block_with_non_numeric_property_keeps_local_event(self) -> None:
        self.state_store.save_beds24_config(self.user["id"], prop_id="hytte-1")
        event = self.state_store.create_event(
            EventRecord(user_id=self.user["id"], title="Eier", start=self.soon, end=self.soon)
        )
        with self.assertLogs("smarthjem.sync_engine", level="WARNING"):
            updated = self.engine.push_block(event)
        self.assertEqual(updated.source_type, "")
        self.assertEqual(self.state_store.get_event(event.id).title, "Eier")


class MaintenanceTests(SyncEngineTestCase):
    def test_duplicate_cleanup_keeps_newest(self) -> None:
        ids = []
        for index in range(3):
            event = self.state_store.create_event(
                EventRecord(
                    user_id=self.user["id"],
                    title="Kari",
                    start=self.soon,
                    end=self.soon + timedelta(days=2),
                    source={"type": "ical", "uid": f"uid-{index}", "feed_id": 1},
                )
            )
            ids.append(event.id)
        result = self.engine.find_and_remove_duplicate_ical_events()
        self.assertEqual(result, {"found": 1, "removed": 2})
        remaining = self.state_store.list_events(self.user["id"])
        self.assertEqual([e.id for e in remaining], [max(ids)])

    def test_csv_import(self) -> None:
        csv_text = (
            "\ufeffNumber,Check In,Check Out,Full Name,Email,Adults,Children,Nights,Referrer,Status,Flag\n"
            "100,2025-08-01,2025-08-04,Nina Dahl,nina@example.com,2,0,3,Airbnb,New,\n"
            ",2025-08-01,2025-08-04,No Number,,1,0,3,,,\n"
            "101,someday,2025-08-04,Bad Dates,,1,0,3,,,\n"
        )
        summary = self.engine.import_beds24_csv(self.user["id"], csv_text)
        self.assertEqual(summary, {"totalRows": 3, "imported": 1, "skipped": 1, "errors": 1})

        again = self.engine.import_beds24_csv(self.user["id"], csv_text)
        self.assertEqual(again["imported"], 1)
        events = self.state_store.list_events(self.user["id"], source_type="beds24")
        self.assertEqual(len(events), 1)
        self.assertTrue(events[0].csv_protected)


class RunOnceTests(SyncEngineTestCase):
    def test_skipped_without_sources(self) -> None:
        result = self.engine.run_once(trigger="manual")
        self.assertEqual(result.status, "skipped")
        self.assertEqual(self.state_store.recent_sync_runs(limit=1)[0]["status"], "skipped")

    def test_partial_when_a_feed_fails(self) -> None:
        good = self.state_store.create_feed(
            user_id=self.user["id"], name="Good", url="https://example.com/good.ics", color="#111111"
        )
        self.state_store.create_feed(
            user_id=self.user["id"], name="Bad", url="https://example.com/bad.ics", color="#222222"
        )

        def fetch_events(url: str):
            if "bad" in url:
                raise FeedFetchError("down", status_code=500)
            return [_feed_event("a", "Kari", self.soon)]

        with mock.patch("smarthjem.sync_engine.IcalFeedClient") as client_cls:
            client_cls.return_value.fetch_events.side_effect = fetch_events
            result = self.engine.run_once(trigger="manual")

        self.assertEqual(result.status, "partial")
        self.assertEqual(result.changes_applied, 1)
        self.assertEqual(result.failures, 1)
        self.assertEqual(len(self.state_store.list_feed_events(good.id)), 1)
        actions = {item["action"] for item in self.state_store.recent_audit_events()}
        self.assertIn("sync_failed", actions)


if __name__ == "__main__":
    unittest.main()
