import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

import jwt
from fastapi.testclient import TestClient
from icalendar import Calendar

from smarthjem.auth import hash_password
from smarthjem.models import EventRecord
from smarthjem.web_app import create_app


class WebAppTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        os.environ["SMARTHJEM_CONFIG_PATH"] = str(Path(self.temp_dir.name) / "config.yaml")
        os.environ["SMARTHJEM_STATE_PATH"] = str(Path(self.temp_dir.name) / "state.db")
        self.app = create_app()
        self.context = self.app.state.context
        self.client = TestClient(self.app)

        store = self.context.state_store
        self.admin = store.create_user(
            username="admin@example.com", password_hash=hash_password("admin-pass"), name="Admin", is_admin=True
        )
        self.owner = store.create_user(
            username="owner@example.com", password_hash=hash_password("owner-pass"), name="Owner"
        )
        self.mini = store.create_user(
            username="mini@example.com", password_hash=hash_password("mini-pass"), is_mini_admin=True
        )
        self.admin_headers = self._login("admin@example.com", "admin-pass")
        self.owner_headers = self._login("owner@example.com", "owner-pass")
        self.mini_headers = self._login("mini@example.com", "mini-pass")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _login(self, username: str, password: str) -> dict[str, str]:
        resp = self.client.post("/api/login", json={"username": username, "password": password})
        self.assertEqual(resp.status_code, 200)
        return {"Authorization": f"Bearer {resp.json()['token']}"}

    def _create_event(self, headers: dict[str, str], **overrides) -> dict:
        payload = {
            "title": "Eier bruker hytta",
            "startTime": "2025-07-01T12:00:00Z",
            "endTime": "2025-07-03T10:00:00Z",
        }
        payload.update(overrides)
        resp = self.client.post("/api/events", json=payload, headers=headers)
        self.assertEqual(resp.status_code, 201)
        return resp.json()

    def test_healthz(self) -> None:
        self.assertEqual(self.client.get("/healthz").json(), {"status": "ok"})

    def test_login_failures(self) -> None:
        resp = self.client.post("/api/login", json={"username": "owner@example.com", "password": "wrong"})
        self.assertEqual(resp.status_code, 401)

        self.context.state_store.update_user(self.owner["id"], is_blocked=True, block_reason="unpaid")
        resp = self.client.post("/api/login", json={"username": "owner@example.com", "password": "owner-pass"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["detail"]["reason"], "unpaid")
        self.assertEqual(self.client.get("/api/events", headers=self.owner_headers).status_code, 403)

    def test_events_require_auth(self) -> None:
        self.assertEqual(self.client.get("/api/events").status_code, 401)

    def test_event_crud(self) -> None:
        event = self._create_event(self.owner_headers, description="Mail me at kari@example.com")
        self.assertEqual(event["user_id"], self.owner["id"])
        self.assertNotIn("kari@example.com", event["description"])

        listed = self.client.get(
            "/api/events",
            params={"startDate": "2025-06-30T00:00:00Z", "endDate": "2025-07-31T00:00:00Z"},
            headers=self.owner_headers,
        )
        self.assertEqual([item["id"] for item in listed.json()], [event["id"]])

        resp = self.client.put(f"/api/events/{event['id']}", json={"title": "Ny tittel"}, headers=self.owner_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["title"], "Ny tittel")

        resp = self.client.put(
            f"/api/events/{event['id']}",
            json={"endTime": "2025-06-01T00:00:00Z"},
            headers=self.owner_headers,
        )
        self.assertEqual(resp.status_code, 400)

        resp = self.client.delete(f"/api/events/{event['id']}", headers=self.owner_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.client.get(f"/api/events/{event['id']}", headers=self.owner_headers).status_code, 404)

    def test_other_users_events_are_forbidden(self) -> None:
        event = self._create_event(self.admin_headers, userId=self.owner["id"])
        self.assertEqual(event["user_id"], self.owner["id"])
        other = self.context.state_store.create_user(
            username="other@example.com", password_hash=hash_password("other-pass")
        )
        headers = self._login(other["username"], "other-pass")
        self.assertEqual(self.client.get(f"/api/events/{event['id']}", headers=headers).status_code, 403)
        resp = self.client.post(
            "/api/events",
            json={"title": "x", "startTime": "2025-07-01T12:00:00Z", "userId": self.owner["id"]},
            headers=headers,
        )
        self.assertEqual(resp.status_code, 403)

    def test_mini_admin_reads_but_cannot_write(self) -> None:
        self._create_event(self.owner_headers)
        resp = self.client.get(f"/api/admin/user-events/{self.owner['id']}", headers=self.mini_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()), 1)
        resp = self.client.post(
            f"/api/admin/user-events/{self.owner['id']}",
            json={"title": "x", "startTime": "2025-07-01T12:00:00Z"},
            headers=self.mini_headers,
        )
        self.assertEqual(resp.status_code, 403)

    def test_public_export_skips_private_and_imported(self) -> None:
        self._create_event(self.owner_headers, title="Synlig")
        self._create_event(self.owner_headers, title="Hemmelig", isPrivate=True)
        resp = self.client.get(f"/api/ical/{self.owner['id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.headers["content-type"].startswith("text/calendar"))
        calendar_obj = Calendar.from_ical(resp.content)
        titles = [str(item.get("SUMMARY")) for item in calendar_obj.walk("VEVENT")]
        self.assertEqual(titles, ["Synlig"])
        self.assertEqual(self.client.get("/api/ical/999").status_code, 404)

    def test_feed_url_must_be_unique(self) -> None:
        payload = {"name": "Eksport", "url": "https://example.com/cal.ics", "feedType": "export"}
        resp = self.client.post("/api/ical-feeds", json=payload, headers=self.owner_headers)
        self.assertEqual(resp.status_code, 201)
        self.assertNotIn("sync", resp.json())
        resp = self.client.post("/api/ical-feeds", json=payload, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 409)
        resp = self.client.post(
            "/api/ical-feeds", json=dict(payload, url="ftp://example.com/cal.ics"), headers=self.owner_headers
        )
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(
            "/api/ical-feeds", json=dict(payload, url="https://example.com/2.ics", feedType="both"),
            headers=self.owner_headers,
        )
        self.assertEqual(resp.status_code, 400)

    def test_maintenance_mode_blocks_non_admins(self) -> None:
        resp = self.client.post(
            "/api/admin/maintenance-mode", json={"enabled": True}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 200)

        blocked = self.client.get("/api/events", headers=self.owner_headers)
        self.assertEqual(blocked.status_code, 503)
        self.assertTrue(blocked.json()["maintenance"])
        self.assertEqual(self.client.get("/api/events", headers=self.admin_headers).status_code, 200)
        self.assertEqual(self.client.get("/api/maintenance-status").status_code, 200)

        self.client.post("/api/admin/maintenance-mode", json={"enabled": False}, headers=self.admin_headers)
        self.assertEqual(self.client.get("/api/events", headers=self.owner_headers).status_code, 200)

    def test_payouts(self) -> None:
        resp = self.client.post(
            "/api/admin/payouts",
            json={"userId": self.owner["id"], "month": 5, "year": 2025, "amount": "1500,50"},
            headers=self.admin_headers,
        )
        self.assertEqual(resp.status_code, 201)
        payout = resp.json()
        self.assertEqual(float(payout["amount"]), 1500.5)
        self.assertEqual(payout["registered_by_id"], self.admin["id"])

        resp = self.client.patch(f"/api/admin/payouts/{payout['id']}", json={"month": 6}, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual((resp.json()["month"], resp.json()["year"]), (6, 2025))

        own = self.client.get("/api/user/payouts/year/2025", headers=self.owner_headers).json()
        self.assertEqual(len(own), 1)

        resp = self.client.post(
            "/api/admin/payouts",
            json={"userId": self.owner["id"], "month": 13, "year": 2025, "amount": 1},
            headers=self.admin_headers,
        )
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(
            "/api/admin/payouts",
            json={"userId": self.owner["id"], "month": 1, "year": 2025, "amount": 1},
            headers=self.mini_headers,
        )
        self.assertEqual(resp.status_code, 403)

    def test_config_is_masked_and_secrets_survive(self) -> None:
        self.context.config_manager.update({"smtp": {"password": "smtp-secret"}})
        resp = self.client.get("/api/config", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["auth"]["jwt_secret"], "***")
        self.assertEqual(resp.json()["smtp"]["password"], "***")

        resp = self.client.put(
            "/api/config",
            json={"payload": {"smtp": {"password": "***", "host": "smtp.example.com"}}},
            headers=self.admin_headers,
        )
        self.assertEqual(resp.status_code, 200)
        smtp = self.context.config_manager.load().smtp
        self.assertEqual(smtp.password, "smtp-secret")
        self.assertEqual(smtp.host, "smtp.example.com")
        self.assertEqual(self.client.get("/api/config", headers=self.owner_headers).status_code, 403)

    def test_manual_sync_runs_inline_when_scheduler_is_stopped(self) -> None:
        resp = self.client.post("/api/sync/run", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["result"]["status"], "skipped")
        status = self.client.get("/api/sync/status", headers=self.mini_headers).json()
        self.assertFalse(status["scheduler_running"])
        self.assertEqual(status["runs"][0]["status"], "skipped")

    def test_register_and_password_reset(self) -> None:
        resp = self.client.post("/api/register", json={"username": "Ny@Example.com", "password": "abcdef"})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["user"]["email"], "ny@example.com")
        resp = self.client.post("/api/register", json={"username": "ny@example.com", "password": "abcdef"})
        self.assertEqual(resp.status_code, 409)
        resp = self.client.post("/api/register", json={"username": "not-an-email", "password": "abcdef"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post(f"/api/admin/users/{self.owner['id']}/reset-link", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["email_sent"])
        token = resp.json()["link"].split("token=")[1]

        resp = self.client.post("/api/reset-password", json={"token": token, "password": "brand-new"})
        self.assertEqual(resp.status_code, 200)
        resp = self.client.post("/api/reset-password", json={"token": token, "password": "again-new"})
        self.assertEqual(resp.status_code, 400)
        self._login("owner@example.com", "brand-new")

    def test_support_case_flow(self) -> None:
        resp = self.client.post(
            "/api/cases", json={"title": "Varmtvann", "message": "Ingen varmtvann"}, headers=self.owner_headers
        )
        self.assertEqual(resp.status_code, 201)
        case = resp.json()

        resp = self.client.post(
            f"/api/cases/{case['id']}/messages", json={"message": "Vi ser på det"}, headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 201)
        count = self.client.get("/api/cases/unread-count", headers=self.owner_headers).json()["count"]
        self.assertEqual(count, 1)

        cases = self.client.get("/api/admin/cases", headers=self.mini_headers).json()
        self.assertEqual(cases[0]["message_count"], 2)
        resp = self.client.post(
            f"/api/cases/{case['id']}/messages", json={"message": "read only"}, headers=self.mini_headers
        )
        self.assertEqual(resp.status_code, 403)

        self.assertEqual(self.client.post(f"/api/cases/{case['id']}/close", headers=self.owner_headers).status_code, 200)
        resp = self.client.post(
            f"/api/cases/{case['id']}/messages", json={"message": "Hallo?"}, headers=self.owner_headers
        )
        self.assertEqual(resp.status_code, 400)

        notifications = self.client.get("/api/notifications", headers=self.admin_headers).json()
        self.assertTrue(any(item["type"] == "case_created" for item in notifications))


    def test_non_numeric_beds24_property_keeps_event_local(self) -> None:
        self.context.state_store.save_beds24_config(self.owner["id"], api_key="legacy-key", prop_id="hytte-1")
        with self.assertLogs("smarthjem.sync_engine", "WARNING"):
            event = self._create_event(self.owner_headers)
        self.assertIsNone(event["source"])

        resp = self.client.post(
            f"/api/admin/beds24-config/{self.owner['id']}",
            json={"apiKey": "legacy-key", "propId": "hytte-1"},
            headers=self.admin_headers,
        )
        self.assertEqual(resp.status_code, 422)

    def test_feed_without_color_gets_default(self) -> None:
        resp = self.client.post(
            "/api/ical-feeds",
            json={"name": "Eksport", "url": "https://example.com/farge.ics", "feedType": "export"},
            headers=self.owner_headers,
        )
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(resp.json()["color"], "#8b5cf6")

    def test_maintenance_exempt_paths(self) -> None:
        self.client.post("/api/admin/maintenance-mode", json={"enabled": True}, headers=self.admin_headers)

        resp = self.client.post("/api/login", json={"username": "owner@example.com", "password": "owner-pass"})
        self.assertEqual(resp.status_code, 200)
        resp = self.client.post(
            "/api/admin/maintenance-mode", json={"enabled": False}, headers=self.owner_headers
        )
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(self.client.get("/api/admin/users", headers=self.owner_headers).status_code, 503)

    def test_maintenance_with_non_numeric_token_subject(self) -> None:
        self.client.post("/api/admin/maintenance-mode", json={"enabled": True}, headers=self.admin_headers)
        auth = self.context.config_manager.load().auth
        token = jwt.encode(
            {"sub": "abc", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            auth.jwt_secret,
            algorithm=auth.jwt_algorithm,
        )
        resp = self.client.get("/api/events", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(resp.status_code, 503)

    def test_admin_user_calendar(self) -> None:
        later = self._create_event(self.owner_headers, startTime="2025-08-01T12:00:00Z", endTime="2025-08-02T10:00:00Z")
        earlier = self._create_event(self.owner_headers)

        resp = self.client.get(f"/api/admin/user-calendar/{self.owner['id']}", headers=self.mini_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([item["id"] for item in resp.json()["events"]], [earlier["id"], later["id"]])
        self.assertEqual(resp.json()["refreshed_feeds"], 0)

        sync_engine = self.context.sync_engine
        with mock.patch.object(sync_engine, "sync_user_ical_feeds", return_value=([], 0)) as refresh:
            resp = self.client.get(
                f"/api/admin/user-calendar/{self.owner['id']}",
                params={"force_refresh": "true"},
                headers=self.admin_headers,
            )
        self.assertEqual(resp.status_code, 200)
        refresh.assert_called_once_with(self.owner["id"])
        self.assertEqual(self.client.get("/api/admin/user-calendar/999", headers=self.admin_headers).status_code, 404)
        resp = self.client.get(f"/api/admin/user-calendar/{self.owner['id']}", headers=self.owner_headers)
        self.assertEqual(resp.status_code, 403)

    def test_ical_feed_events_only_from_enabled_feeds(self) -> None:
        store = self.context.state_store
        enabled = store.create_feed(
            user_id=self.owner["id"], name="Airbnb", url="https://example.com/a.ics", color="#ff5a5f"
        )
        disabled = store.create_feed(
            user_id=self.owner["id"], name="Gammel", url="https://example.com/b.ics", color="#000000", enabled=False
        )
        start = datetime(2025, 7, 1, 12, tzinfo=timezone.utc)
        for feed, uid in ((enabled, "a-1"), (disabled, "b-1")):
            store.create_event(
                EventRecord(
                    user_id=self.owner["id"],
                    title=f"Booking {uid}",
                    start=start,
                    end=start + timedelta(days=2),
                    source={"type": "ical", "feed_id": feed.id, "uid": uid},
                )
            )
        self._create_event(self.owner_headers)

        resp = self.client.get("/api/ical-feed-events", headers=self.owner_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([(item["title"], item["feed_name"]) for item in resp.json()], [("Booking a-1", "Airbnb")])
        resp = self.client.get(
            "/api/ical-feed-events", params={"startDate": "2025-09-01T00:00:00Z"}, headers=self.owner_headers
        )
        self.assertEqual(resp.json(), [])

    def test_admin_agreements_and_notes(self) -> None:
        payload = {
            "userId": self.owner["id"],
            "title": "Årsgjennomgang",
            "meetingDate": "2025-09-01T10:00:00Z",
            "endDate": "2025-09-01T11:00:00Z",
            "meetingLocation": "Hytta",
            "meetingType": "review",
        }
        resp = self.client.post("/api/admin-agreements", json=payload, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 201)
        agreement = resp.json()
        self.assertEqual(agreement["admin_name"], "Admin")
        self.assertEqual(agreement["status"], "scheduled")

        bad = dict(payload, endDate="2025-08-01T10:00:00Z")
        missing = dict(payload, userId=999)
        for body, headers, expected in (
            (bad, self.admin_headers, 400),
            (missing, self.admin_headers, 404),
            (payload, self.owner_headers, 403),
        ):
            resp = self.client.post("/api/admin-agreements", json=body, headers=headers)
            self.assertEqual(resp.status_code, expected)

        own = self.client.get("/api/admin-agreements", headers=self.owner_headers).json()
        self.assertEqual([item["id"] for item in own], [agreement["id"]])
        agreement_url = f"/api/admin-agreements/{agreement['id']}"
        self.assertEqual(self.client.get(agreement_url, headers=self.mini_headers).status_code, 403)
        titles = [item["title"] for item in self.client.get("/api/notifications", headers=self.owner_headers).json()]
        self.assertIn("Ny avtale", titles)

        url = f"{agreement_url}/notes"
        resp = self.client.post(url, json={"content": "Kun admin", "isPrivate": True}, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 201)
        resp = self.client.post(url, json={"content": "Takk"}, headers=self.owner_headers)
        self.assertEqual(resp.status_code, 201)
        owner_note = resp.json()
        resp = self.client.post(url, json={"content": "x", "isPrivate": True}, headers=self.owner_headers)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual([n["content"] for n in self.client.get(url, headers=self.owner_headers).json()], ["Takk"])
        admin_notes = self.client.get(url, headers=self.admin_headers).json()
        self.assertEqual([n["content"] for n in admin_notes], ["Takk", "Kun admin"])
        self.assertTrue(admin_notes[1]["author_is_admin"])

        resp = self.client.put(f"{url}/{owner_note['id']}", json={"content": "Tusen takk"}, headers=self.owner_headers)
        self.assertEqual(resp.json()["content"], "Tusen takk")
        self.assertEqual(self.client.delete(f"{url}/{owner_note['id']}", headers=self.owner_headers).status_code, 403)

        resp = self.client.put(agreement_url, json={"status": "completed"}, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertIsNotNone(resp.json()["completed_at"])

        resp = self.client.delete(agreement_url, headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.context.state_store.list_agreement_notes(agreement["id"], include_private=True), [])
        self.assertEqual(self.client.get(agreement_url, headers=self.admin_headers).status_code, 404)

    def test_backup_routes(self) -> None:
        self._create_event(self.owner_headers, title="Sikret")
        resp = self.client.post("/api/admin/backups", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 201)
        filename = resp.json()["filename"]
        self.assertEqual(self.client.post("/api/admin/backups", headers=self.mini_headers).status_code, 403)

        for event in self.context.state_store.list_events(self.owner["id"]):
            self.context.state_store.delete_event(event.id)
        resp = self.client.post(f"/api/admin/backups/restore/{filename}", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["restored"]["events"], 1)
        self.assertEqual([e.title for e in self.context.state_store.list_events(self.owner["id"])], ["Sikret"])

        backups = self.client.get("/api/admin/backups", headers=self.admin_headers).json()
        self.assertEqual(len(backups), 2)
        resp = self.client.post("/api/admin/backups/restore/state.db", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(
            "/api/admin/backups/restore/calendar_backup_2020-01-01T00-00-00Z.json", headers=self.admin_headers
        )
        self.assertEqual(resp.status_code, 404)

    def test_collaborative_event_and_suggestions(self) -> None:
        resp = self.client.post(
            "/api/collaborative-events",
            json={"title": "Dugnad", "startTime": "2025-07-05T09:00:00Z", "endTime": "2025-07-05T15:00:00Z"},
            headers=self.owner_headers,
        )
        self.assertEqual(resp.status_code, 201)
        event = resp.json()
        code = event["collaboration_code"]
        self.assertTrue(event["is_collaborative"])
        self.assertEqual(len(code), 8)
        self.assertEqual(event["color"], "#ef4444")

        guest = self.context.state_store.create_user(
            username="guest@example.com", password_hash=hash_password("guest-pass"), name="Gjest"
        )
        guest_headers = self._login("guest@example.com", "guest-pass")
        found = self.client.get(f"/api/collaborative-events/{code}", headers=guest_headers).json()
        self.assertEqual(found["id"], event["id"])
        join_url = f"/api/collaborative-events/{event['id']}/join"
        self.assertEqual(self.client.post(join_url, json={"code": "feil"}, headers=guest_headers).status_code, 403)
        self.assertEqual(self.client.post(join_url, json={"code": code}, headers=guest_headers).status_code, 200)
        plain = self._create_event(self.owner_headers)
        plain_join_url = f"/api/collaborative-events/{plain['id']}/join"
        resp = self.client.post(plain_join_url, json={"code": code}, headers=guest_headers)
        self.assertEqual(resp.status_code, 400)

        listed = self.client.get("/api/collaborative-events", headers=guest_headers).json()
        self.assertEqual([(item["id"], item["is_collaborative_owner"]) for item in listed], [(event["id"], False)])
        collaborators = self.client.get(
            f"/api/collaborative-events/{event['id']}/collaborators", headers=guest_headers
        ).json()
        self.assertEqual(sorted(c["role"] for c in collaborators), ["guest", "owner"])

        url = f"/api/events/{event['id']}/suggestions"
        resp = self.client.post(url, json={"type": "startTime", "suggestedValue": "neste uke"}, headers=guest_headers)
        self.assertEqual(resp.status_code, 400)
        resp = self.client.post(
            url, json={"type": "title", "suggestedValue": "Vårdugnad", "message": "Bedre navn"}, headers=guest_headers
        )
        self.assertEqual(resp.status_code, 201)
        suggestion = resp.json()
        self.assertEqual(suggestion["original_value"], "Dugnad")
        self.assertEqual(len(self.client.get(f"{url}/pending", headers=self.owner_headers).json()), 1)

        resolve_url = f"/api/suggestions/{suggestion['id']}/resolve"
        resp = self.client.post(resolve_url, json={"status": "approved"}, headers=guest_headers)
        self.assertEqual(resp.status_code, 403)
        resp = self.client.post(resolve_url, json={"status": "approved"}, headers=self.owner_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["event"]["title"], "Vårdugnad")
        self.assertEqual(resp.json()["suggestion"]["status"], "approved")
        resp = self.client.post(resolve_url, json={"status": "rejected"}, headers=self.owner_headers)
        self.assertEqual(resp.status_code, 400)
        titles = [item["title"] for item in self.client.get("/api/notifications", headers=guest_headers).json()]
        self.assertIn("Forslag godkjent", titles)

        remove_url = f"/api/collaborative-events/{event['id']}/collaborators"
        resp = self.client.delete(f"{remove_url}/{self.owner['id']}", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.client.delete(f"{remove_url}/{guest['id']}", headers=guest_headers).status_code, 200)
        self.assertEqual(self.client.get(url, headers=guest_headers).status_code, 403)


if __name__ == "__main__":
    unittest.main()
