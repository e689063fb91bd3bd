"""
Notification messages - Email content for each onboarding milestone.

Each builder returns a Message; deliver() hands it to the dispatcher and
reports failures through the log only, since no saga step depends on an
email having been delivered.
"""

import html
import logging
from dataclasses import dataclass

from .models import CredentialRecord, IdentifierRecord, SubscriptionRecord
from .ports import NotificationDispatcher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    subject: str
    text_body: str
    html_body: str


def verification_code_message(code: str, ttl_seconds: int) -> Message:
    minutes = max(1, ttl_seconds // 60)
    return Message(
        subject="Machine to Machine email confirmation",
        text_body=f"Your verification code is: {code}\nIt expires in {minutes} minutes.",
        html_body=(
            "<p>Your verification code is:</p>"
            f"<p style=\"font-size:24px;letter-spacing:4px\"><strong>{html.escape(code)}</strong></p>"
            f"<p>It expires in {minutes} minutes.</p>"
        ),
    )


def subscription_confirmed_message(subscription: SubscriptionRecord) -> Message:
    plan = subscription.plan_type.value if subscription.plan_type else "subscription"
    return Message(
        subject="Machine to Machine purchase confirmation",
        text_body=f"Your {plan} subscription has been created successfully!",
        html_body=f"<p>Your <strong>{html.escape(plan)}</strong> subscription has been created successfully!</p>",
    )


def credentials_issued_message(
    identifier: IdentifierRecord, credential: CredentialRecord, signed_jwt: str
) -> Message:
    snippet = (
        f'<meta name="m2m-did" content="{identifier.uri}">\n'
        f'<meta name="m2m-vc-id" content="{credential.uuid}">\n'
        f'<meta name="m2m-vc" content="{signed_jwt}">'
    )
    text = (
        "Your credentials\n\n"
        f"DID: {identifier.uri}\n"
        f"Credential id: {credential.uuid}\n"
        f"Credential: {signed_jwt}\n\n"
        f"Embed this snippet in your site:\n{snippet}\n"
    )
    return Message(
        subject="Your credentials",
        text_body=text,
        html_body=(
            "<p>Your decentralized identifier and credential are ready.</p>"
            f"<p>DID: <code>{html.escape(identifier.uri)}</code></p>"
            f"<p>Credential id: <code>{html.escape(credential.uuid)}</code></p>"
            "<p>Embed this snippet in your site:</p>"
            f"<pre>{html.escape(snippet)}</pre>"
        ),
    )


def credential_verified_message(profile_url: str, uuid: str) -> Message:
    return Message(
        subject="Your code snippet has been verified.",
        text_body=f"Your code snippet has been verified.\nCredential {uuid}\nProfile: {profile_url}",
        html_body=(
            "<p>Your code snippet has been verified.</p>"
            f"<p>Credential <code>{html.escape(uuid)}</code></p>"
            f'<p><a href="{html.escape(profile_url)}">View your profile</a></p>'
        ),
    )


def deliver(dispatcher: NotificationDispatcher, to: str, message: Message) -> bool:
    """
    Send message to to.

    Returns:
        True if the dispatcher accepted the message. Dispatcher errors are
        logged and reported as False.
    """
    try:
        sent = dispatcher.send(to, message.subject, message.text_body, message.html_body)
    except Exception:
        logger.exception("Notification %r to %s raised", message.subject, _mask(to))
        return False
    if not sent:
        logger.warning("Notification %r to %s was not sent", message.subject, _mask(to))
    return bool(sent)


def _mask(email: str) -> str:
    return f"{email[:3]}***"
