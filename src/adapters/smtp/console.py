"""
Console notification adapter - Implements NotificationDispatcher protocol.

This module provides a console-based implementation of the domain's
notification port, logging each message to stdout for demo purposes.
"""

import logging

logger = logging.getLogger(__name__)


class ConsoleNotificationDispatcher:
    """
    Implements NotificationDispatcher protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - verification codes and signed
    credentials are printed in full, so never use it in production.
    """

    def send(self, to: str, subject: str, text_body: str, html_body: str) -> bool:
        """
        Log the message to console (simulates email delivery).

        The text body is logged at INFO level to be visible in
        the service logs; the HTML alternative is not printed.

        Returns:
            Always True
        """
        logger.info("[EMAIL] To: %s Subject: %s\n%s", to, subject, text_body)
        return True
