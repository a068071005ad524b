from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from smarthjem.auth import has_admin_access
from smarthjem.notifier import Notifier
from smarthjem.state_store import StateStore

logger = logging.getLogger(__name__)

DEPARTMENTS = {
    "it_dept": "IT-avdeling",
    "customer_service": "Kundeservice",
    "homeowner_service": "Huseierservice",
    "finance": "Økonomiavdeling",
    "insurance": "Forsikringsavdeling",
}
DEFAULT_DEPARTMENT = "Generell avdeling"
PREVIEW_LENGTH = 30

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_CLOSED = "closed"


class CaseError(ValueError):
    pass


class CasePermissionError(PermissionError):
    pass


def department_name(code: str | None) -> str:
    return DEPARTMENTS.get(str(code or "").strip(), DEFAULT_DEPARTMENT)


def next_case_number(state_store: StateStore, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    year_start = datetime(now.year, 1, 1, tzinfo=timezone.utc).isoformat()
    count = state_store.count_cases_created_since(year_start)
    return f"CASE-{now.year}-{count + 1:04d}"


def message_preview(message: str | None) -> str:
    text = (message or "").strip()
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[:PREVIEW_LENGTH] + "..."


class SupportService:
    def __init__(self, state_store: StateStore, notifier: Notifier) -> None:
        self.state_store = state_store
        self.notifier = notifier

    def get_case(self, case_id: int) -> dict[str, Any]:
        case = self.state_store.get_case(case_id)
        if case is None:
            raise LookupError("Case not found")
        return case

    def can_view(self, user: dict[str, Any], case: dict[str, Any]) -> bool:
        if has_admin_access(user):
            return True
        return user["id"] in {case["user_id"], case.get("admin_id")}

    def can_change(self, user: dict[str, Any], case: dict[str, Any]) -> bool:
        if user.get("is_admin"):
            return True
        return user["id"] in {case["user_id"], case.get("admin_id")}

    def _require_view(self, user: dict[str, Any], case: dict[str, Any]) -> None:
        if not self.can_view(user, case):
            raise CasePermissionError("No access to this case")

    def create_case(
        self,
        user: dict[str, Any],
        *,
        title: str,
        category: str = "general",
        priority: str = "medium",
        message: str = "",
    ) -> dict[str, Any]:
        case = self.state_store.create_case(
            user_id=user["id"],
            case_number=next_case_number(self.state_store),
            title=title.strip(),
            category=category,
            priority=priority,
        )
        if message.strip():
            self.state_store.add_case_message(
                case_id=case["id"], sender_id=user["id"], message=message.strip(), is_admin_message=False
            )
        self.notifier.notify_admins(
            type="case_created",
            title=f"Ny sak {case['case_number']}",
            message=case["title"],
            from_user_id=user["id"],
        )
        logger.info("Case %s created by user %s", case["case_number"], user["id"])
        return case

    def list_messages(self, user: dict[str, Any], case: dict[str, Any]) -> list[dict[str, Any]]:
        self._require_view(user, case)
        if self.can_change(user, case):
            # reading marks the other party's messages as read
            reader_is_admin = bool(user.get("is_admin")) and user["id"] != case["user_id"]
            self.state_store.mark_case_messages_read(case["id"], admin_messages=not reader_is_admin)
        return self.state_store.list_case_messages(case["id"])

    def post_message(
        self,
        user: dict[str, Any],
        case: dict[str, Any],
        message: str,
        attachment_url: str | None = None,
    ) -> dict[str, Any]:
        if not self.can_change(user, case):
            raise CasePermissionError("No access to this case")
        if case.get("is_closed"):
            raise CaseError("Case is closed")
        if not message.strip():
            raise CaseError("Message is required")
        is_admin_message = bool(user.get("is_admin")) and user["id"] != case["user_id"]
        created = self.state_store.add_case_message(
            case_id=case["id"],
            sender_id=user["id"],
            message=message.strip(),
            is_admin_message=is_admin_message,
            target_user_id=case["user_id"] if is_admin_message else case.get("admin_id"),
            attachment_url=attachment_url,
        )
        self.state_store.update_case(
            case["id"], status=STATUS_OPEN if is_admin_message else STATUS_IN_PROGRESS
        )
        if is_admin_message:
            self.notifier.notify(
                case["user_id"],
                type="case_message",
                title=f"Nytt svar i {case['case_number']}",
                message=message_preview(message),
                from_user_id=user["id"],
                email=True,
            )
        elif case.get("admin_id"):
            self.notifier.notify(
                case["admin_id"],
                type="case_message",
                title=f"Ny melding i {case['case_number']}",
                message=message_preview(message),
                from_user_id=user["id"],
            )
        return created

    def close_case(self, user: dict[str, Any], case: dict[str, Any]) -> dict[str, Any]:
        if not self.can_change(user, case):
            raise CasePermissionError("Only the owner, the assigned admin or an admin can close a case")
        if case.get("is_closed"):
            raise CaseError("Case is already closed")
        updated = self.state_store.update_case(
            case["id"],
            status=STATUS_CLOSED,
            is_closed=True,
            closed_at=datetime.now(timezone.utc),
            closed_by_id=user["id"],
        )
        self._notify_other_party(user, updated, "case_closed", f"Sak {case['case_number']} er lukket")
        return updated

    def reopen_case(self, user: dict[str, Any], case: dict[str, Any]) -> dict[str, Any]:
        if not self.can_change(user, case):
            raise CasePermissionError("Only the owner, the assigned admin or an admin can reopen a case")
        if not case.get("is_closed"):
            raise CaseError("Case is not closed")
        updated = self.state_store.update_case(
            case["id"], status=STATUS_OPEN, is_closed=False, closed_at=None, closed_by_id=None
        )
        self._notify_other_party(user, updated, "case_reopened", f"Sak {case['case_number']} er gjenåpnet")
        return updated

    def assign(
        self,
        admin: dict[str, Any],
        case: dict[str, Any],
        *,
        admin_id: int | None = None,
        department: str | None = None,
    ) -> dict[str, Any]:
        fields: dict[str, Any] = {"status": STATUS_IN_PROGRESS}
        if department:
            fields["department"] = department_name(department)
            fields["admin_id"] = None
            assignee = fields["department"]
        else:
            target_id = admin_id or admin["id"]
            target = self.state_store.get_user(target_id)
            if target is None or not target.get("is_admin"):
                raise CaseError("Assignee must be an admin")
            fields["admin_id"] = target_id
            assignee = target.get("name") or target["username"]
        updated = self.state_store.update_case(case["id"], **fields)
        self.notifier.notify(
            case["user_id"],
            type="case_assigned",
            title=f"Sak {case['case_number']} er tildelt",
            message=f"Saken behandles av {assignee}",
            from_user_id=admin["id"],
        )
        return updated

    def unread_count(self, user: dict[str, Any]) -> int:
        if user.get("is_admin"):
            return self.state_store.unread_case_messages_for_admin(user["id"])
        return self.state_store.unread_case_messages_for_user(user["id"])

    def overview(self, cases: list[dict[str, Any]]) -> list[dict[str, Any]]:
        output = []
        for case in cases:
            count, last = self.state_store.case_message_summary(case["id"])
            item = dict(case)
            item["message_count"] = count
            item["last_message"] = message_preview(last["message"]) if last else ""
            item["last_message_at"] = last["created_at"] if last else None
            owner = self.state_store.get_user(case["user_id"])
            item["user"] = {"id": owner["id"], "username": owner["username"], "name": owner["name"]} if owner else None
            output.append(item)
        return output

    def _notify_other_party(self, actor: dict[str, Any], case: dict[str, Any], type: str, title: str) -> None:
        if actor["id"] == case["user_id"]:
            if case.get("admin_id"):
                self.notifier.notify(case["admin_id"], type=type, title=title, message=case["title"], from_user_id=actor["id"])
            else:
                self.notifier.notify_admins(type=type, title=title, message=case["title"], from_user_id=actor["id"])
        else:
            self.notifier.notify(case["user_id"], type=type, title=title, message=case["title"], from_user_id=actor["id"])
