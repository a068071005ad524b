import tempfile
import unittest
from pathlib import Path
from unittest import mock

from smarthjem.config_manager import ConfigManager
from smarthjem.notifier import EMAIL_SETTING_KEY, Notifier
from smarthjem.state_store import StateStore


class NotifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.config_manager = ConfigManager(str(root / "config.yaml"))
        self.config_manager.update({"smtp": {"host": "smtp.example.com", "from_email": "noreply@example.com"}})
        self.state_store = StateStore(str(root / "state.db"))
        self.notifier = Notifier(self.config_manager, self.state_store)
        self.user = self.state_store.create_user(
            username="owner@example.com", password_hash="x", email="owner@example.com"
        )

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _notify(self) -> mock.Mock:
        with mock.patch.object(self.notifier, "send_email", return_value=True) as send_email:
            notification = self.notifier.notify(
                self.user["id"], type="system", title="Ny avtale", message="Møte fredag", email=True
            )
        self.assertEqual(notification["title"], "Ny avtale")
        return send_email

    def test_email_sent_when_enabled(self) -> None:
        send_email = self._notify()
        send_email.assert_called_once()
        self.assertEqual(send_email.call_args.args[0], "owner@example.com")

    def test_global_setting_disables_email(self) -> None:
        self.state_store.set_setting(EMAIL_SETTING_KEY, "false")
        self._notify().assert_not_called()
        self.assertEqual(self.state_store.unread_notification_count(self.user["id"]), 1)

    def test_user_preference_disables_email(self) -> None:
        self.state_store.update_user(self.user["id"], email_notifications_enabled=False)
        self._notify().assert_not_called()

    def test_other_setting_values_keep_email_on(self) -> None:
        self.state_store.set_setting(EMAIL_SETTING_KEY, "true")
        self.assertTrue(self.notifier.email_enabled_for(self.state_store.get_user(self.user["id"])))

    def test_unconfigured_smtp_skips_sending(self) -> None:
        self.config_manager.update({"smtp": {"host": ""}})
        with mock.patch("smarthjem.notifier.smtplib.SMTP_SSL") as smtp_cls:
            self.assertFalse(self.notifier.send_email("a@example.com", "Hei", "<p>Hei</p>", "Hei"))
        smtp_cls.assert_not_called()

    def test_send_email_over_ssl(self) -> None:
        self.config_manager.update({"smtp": {"username": "mailer", "password": "secret"}})
        with mock.patch("smarthjem.notifier.smtplib.SMTP_SSL") as smtp_cls:
            self.assertTrue(self.notifier.send_email("a@example.com", "Hei", "<p>Hei</p>", "Hei"))
        server = smtp_cls.return_value.__enter__.return_value
        server.login.assert_called_once_with("mailer", "secret")
        self.assertEqual(server.sendmail.call_args.args[:2], ("noreply@example.com", "a@example.com"))


if __name__ == "__main__":
    unittest.main()
