from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from smarthjem.config_manager import ConfigManager
from smarthjem.models import EventRecord
from smarthjem.state_store import StateStore

logger = logging.getLogger(__name__)

EMAIL_SETTING_KEY = "notifications.email.enabled"
EVENT_ACTIONS = {
    "created": "Ny hendelse",
    "updated": "Hendelse oppdatert",
    "deleted": "Hendelse slettet",
}


class Notifier:
    def __init__(self, config_manager: ConfigManager, state_store: StateStore) -> None:
        self.config_manager = config_manager
        self.state_store = state_store

    def send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """Send email via SMTP"""
        smtp = self.config_manager.load().smtp
        if not smtp.is_configured():
            logger.warning("SMTP not configured, skipping email")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{smtp.from_name} <{smtp.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain", "utf-8"))
        msg.attach(MIMEText(html_body, "html", "utf-8"))

        try:
            if smtp.use_ssl:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(smtp.host, smtp.port, context=context) as server:
                    if smtp.username:
                        server.login(smtp.username, smtp.password)
                    server.sendmail(smtp.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP(smtp.host, smtp.port) as server:
                    server.starttls(context=ssl.create_default_context())
                    if smtp.username:
                        server.login(smtp.username, smtp.password)
                    server.sendmail(smtp.from_email, to_email, msg.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send email '%s': %s", subject, exc)
            return False
        logger.info("Email '%s' sent", subject)
        return True

    def email_enabled_for(self, user: dict[str, Any]) -> bool:
        if self.state_store.get_setting(EMAIL_SETTING_KEY) == "false":
            return False
        return bool(user.get("email_notifications_enabled") and (user.get("email") or user.get("username")))

    def notify(
        self,
        user_id: int,
        *,
        type: str,
        title: str,
        message: str,
        from_user_id: int | None = None,
        event_id: int | None = None,
        email: bool = False,
    ) -> dict[str, Any]:
        notification = self.state_store.create_notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            from_user_id=from_user_id,
            event_id=event_id,
        )
        if email:
            user = self.state_store.get_user(user_id)
            if user is not None and self.email_enabled_for(user):
                text = f"{title}\n\n{message}"
                body = f"<h2>{html.escape(title)}</h2><p>{html.escape(message)}</p>"
                self.send_email(user.get("email") or user["username"], title, body, text)
        return notification

    def notify_admins(self, *, type: str, title: str, message: str, from_user_id: int | None = None) -> int:
        admins = self.state_store.list_admins()
        for admin in admins:
            if from_user_id is not None and admin["id"] == from_user_id:
                continue
            self.notify(admin["id"], type=type, title=title, message=message, from_user_id=from_user_id)
        return len(admins)

    def event_changed(self, event: EventRecord, action: str, actor_id: int | None = None) -> None:
        title = EVENT_ACTIONS.get(action, "Hendelse")
        when = event.start.strftime("%d.%m.%Y")
        self.notify(
            event.user_id,
            type=f"event_{action}",
            title=title,
            message=f"{event.title} ({when})",
            from_user_id=actor_id,
            event_id=event.id if action != "deleted" else None,
            email=True,
        )

    def send_password_reset(self, user: dict[str, Any], token: str) -> bool:
        app_url = self.config_manager.load().smtp.app_url
        link = f"{app_url}/reset-password?token={token}"
        subject = "Tilbakestill passord - Smart Hjem"
        text = f"Hei {user.get('name') or ''},\n\nBruk lenken under for å sette nytt passord:\n{link}\n"
        body = (
            f"<p>Hei {html.escape(user.get('name') or '')},</p>"
            f'<p>Bruk lenken under for å sette nytt passord:</p><p><a href="{html.escape(link)}">{html.escape(link)}</a></p>'
        )
        return self.send_email(user.get("email") or user["username"], subject, body, text)
