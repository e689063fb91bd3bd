"""
Unit tests for SmtpNotificationDispatcher.

smtplib.SMTP is patched; no network connection is made.
"""

import smtplib
from unittest.mock import MagicMock, patch

from src.adapters.smtp.mailer import SmtpNotificationDispatcher


def make_dispatcher(**overrides) -> SmtpNotificationDispatcher:
    values = {
        "host": "smtp.example.com",
        "port": 587,
        "user": "noreply@example.com",
        "password": "secret",
        "from_name": "M2M",
    }
    values.update(overrides)
    return SmtpNotificationDispatcher(**values)


class TestSend:
    """Tests for send()."""

    @patch("src.adapters.smtp.mailer.smtplib.SMTP")
    def test_sends_multipart_message(self, smtp_class: MagicMock) -> None:
        """A message is sent with STARTTLS, login and both bodies."""
        server = smtp_class.return_value.__enter__.return_value

        sent = make_dispatcher().send("ada@example.com", "Hello", "plain body", "<p>html body</p>")

        assert sent is True
        smtp_class.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("noreply@example.com", "secret")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "ada@example.com"
        assert message["Subject"] == "Hello"
        assert message["From"] == "M2M <noreply@example.com>"
        assert message.get_body(("plain",)).get_content().strip() == "plain body"
        assert "html body" in message.get_body(("html",)).get_content()

    @patch("src.adapters.smtp.mailer.smtplib.SMTP")
    def test_without_tls_or_credentials(self, smtp_class: MagicMock) -> None:
        """STARTTLS and login are skipped when disabled or unconfigured."""
        server = smtp_class.return_value.__enter__.return_value

        make_dispatcher(password="", starttls=False).send("ada@example.com", "Hi", "text", "")

        server.starttls.assert_not_called()
        server.login.assert_not_called()
        server.send_message.assert_called_once()

    @patch("src.adapters.smtp.mailer.smtplib.SMTP")
    def test_smtp_error_returns_false(self, smtp_class: MagicMock) -> None:
        """SMTP errors are reported as a rejected message."""
        server = smtp_class.return_value.__enter__.return_value
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})

        assert make_dispatcher().send("ada@example.com", "Hi", "text", "") is False

    @patch("src.adapters.smtp.mailer.smtplib.SMTP")
    def test_connection_error_returns_false(self, smtp_class: MagicMock) -> None:
        """Socket errors while connecting are reported as a rejected message."""
        smtp_class.side_effect = ConnectionRefusedError("refused")

        assert make_dispatcher().send("ada@example.com", "Hi", "text", "") is False
