"""
SMTP notification adapter - Implements NotificationDispatcher protocol.

Sends multipart (text + HTML) messages over SMTP with STARTTLS. One
connection is opened per message; onboarding sends a handful of emails
per developer, so there is nothing to pool.
"""

import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

logger = logging.getLogger(__name__)


class SmtpNotificationDispatcher:
    """Implements NotificationDispatcher protocol via smtplib."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_name: str = "",
        timeout: float = 10.0,
        starttls: bool = True,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._from = formataddr((from_name, user)) if from_name else user
        self._timeout = timeout
        self._starttls = starttls

    def send(self, to: str, subject: str, text_body: str, html_body: str) -> bool:
        """
        Deliver one message.

        Returns:
            True if the server accepted the message, False on any SMTP or
            socket error (logged)
        """
        message = EmailMessage()
        message["From"] = self._from
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text_body)
        if html_body:
            message.add_alternative(html_body, subtype="html")

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                if self._starttls:
                    server.starttls()
                if self._user and self._password:
                    server.login(self._user, self._password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery of %r to %s*** failed: %s", subject, to[:3], e)
            return False

        logger.info("Email %r sent to %s***", subject, to[:3])
        return True
