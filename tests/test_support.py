import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path
from unittest import mock

from smarthjem.state_store import StateStore
from smarthjem.support import (
    CaseError,
    CasePermissionError,
    SupportService,
    department_name,
    message_preview,
    next_case_number,
)


class SupportServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.state_store = StateStore(str(Path(self.temp_dir.name) / "state.db"))
        self.notifier = mock.Mock()
        self.service = SupportService(self.state_store, self.notifier)
        self.owner = self.state_store.create_user(username="owner@example.com", password_hash="x", name="Owner")
        self.admin = self.state_store.create_user(
            username="admin@example.com", password_hash="x", name="Admin", is_admin=True
        )
        self.mini = self.state_store.create_user(username="mini@example.com", password_hash="x", is_mini_admin=True)
        self.stranger = self.state_store.create_user(username="other@example.com", password_hash="x")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _case(self):
        return self.service.create_case(self.owner, title=" Lekkasje ", message="Vann på badet")

    def test_case_numbers_count_per_year(self) -> None:
        now = datetime.now(timezone.utc)
        first = self._case()
        self.assertEqual(first["case_number"], f"CASE-{now.year}-0001")
        self.assertEqual(first["title"], "Lekkasje")
        self.assertEqual(next_case_number(self.state_store), f"CASE-{now.year}-0002")
        self.notifier.notify_admins.assert_called_once()

    def test_message_flow_updates_status(self) -> None:
        case = self._case()
        self.service.post_message(self.owner, case, "Any news?")
        self.assertEqual(self.state_store.get_case(case["id"])["status"], "in_progress")

        self.service.post_message(self.admin, case, "We are on it")
        self.assertEqual(self.state_store.get_case(case["id"])["status"], "open")
        self.assertEqual(self.notifier.notify.call_args.args[0], self.owner["id"])
        self.assertTrue(self.notifier.notify.call_args.kwargs["email"])

        messages = self.service.list_messages(self.owner, case)
        self.assertEqual(len(messages), 3)
        self.assertEqual(self.service.unread_count(self.owner), 0)

    def test_closed_case_rejects_messages_and_can_reopen(self) -> None:
        case = self._case()
        closed = self.service.close_case(self.owner, case)
        self.assertTrue(closed["is_closed"])
        with self.assertRaises(CaseError):
            self.service.post_message(self.owner, closed, "Hello?")
        with self.assertRaises(CaseError):
            self.service.close_case(self.owner, closed)
        reopened = self.service.reopen_case(self.admin, closed)
        self.assertFalse(reopened["is_closed"])
        self.assertEqual(reopened["status"], "open")

    def test_permissions(self) -> None:
        case = self._case()
        self.assertTrue(self.service.can_view(self.mini, case))
        self.assertFalse(self.service.can_change(self.mini, case))
        with self.assertRaises(CasePermissionError):
            self.service.post_message(self.mini, case, "read only")
        with self.assertRaises(CasePermissionError):
            self.service.list_messages(self.stranger, case)

    def test_assign_to_admin_and_department(self) -> None:
        case = self._case()
        assigned = self.service.assign(self.admin, case)
        self.assertEqual(assigned["admin_id"], self.admin["id"])
        self.assertEqual(assigned["status"], "in_progress")
        with self.assertRaises(CaseError):
            self.service.assign(self.admin, case, admin_id=self.stranger["id"])
        moved = self.service.assign(self.admin, case, department="finance")
        self.assertEqual(moved["department"], "Økonomiavdeling")
        self.assertIsNone(moved["admin_id"])

    def test_overview_has_preview(self) -> None:
        case = self._case()
        self.service.post_message(self.owner, case, "This message is definitely longer than thirty characters")
        item = self.service.overview([self.state_store.get_case(case["id"])])[0]
        self.assertEqual(item["message_count"], 2)
        self.assertTrue(item["last_message"].endswith("..."))
        self.assertEqual(item["user"]["username"], "owner@example.com")


class HelperTests(unittest.TestCase):
    def test_department_name(self) -> None:
        self.assertEqual(department_name("it_dept"), "IT-avdeling")
        self.assertEqual(department_name("unknown"), "Generell avdeling")

    def test_message_preview(self) -> None:
        self.assertEqual(message_preview("short"), "short")
        self.assertEqual(message_preview("x" * 40), "x" * 30 + "...")


if __name__ == "__main__":
    unittest.main()
