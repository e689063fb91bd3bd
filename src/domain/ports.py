"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure and from the external collaborators: the entity
store, the payment provider, the identity and credential registries,
and the notification dispatcher. Adapters implement these protocols.
"""

from datetime import datetime
from typing import Any, Protocol

from .models import (
    CheckoutSession,
    CredentialDraft,
    CredentialRecord,
    DeveloperRecord,
    IdentifierRecord,
    LifecycleState,
    PaymentSession,
    ProviderSubscription,
    RegisteredIdentifier,
    SubscriptionRecord,
)


class DeveloperRepository(Protocol):
    """Port interface for developer record persistence."""

    def create(self, developer: DeveloperRecord) -> None:
        """
        Insert a new developer record.

        Raises:
            ConflictError: If the email is already registered
        """
        ...

    def get(self, developer_id: str) -> DeveloperRecord | None: ...

    def get_by_email(self, email: str) -> DeveloperRecord | None: ...

    def get_by_customer_id(self, customer_id: str) -> DeveloperRecord | None: ...

    # Every write below touches only the fields its step owns and moves
    # lifecycle_state forward, never backward. A caller holding a stale
    # snapshot therefore cannot undo a step another caller committed.
    #
    # Raises (all writes):
    #     NotFoundError: If the record does not exist
    #     PersistenceError: If the store rejects the write

    def store_challenge(self, developer_id: str, code_hash: str, expiry: datetime) -> bool:
        """
        Replace the pending challenge of a developer whose email is unverified.

        Advances the lifecycle to CodeIssued.

        Returns:
            True if stored, False if the email is already verified
        """
        ...

    def consume_challenge(self, developer_id: str, code_hash: str, sentinel: str) -> bool:
        """
        Atomically replace the stored code hash with sentinel.

        The replacement only happens if the stored hash still equals
        code_hash, so exactly one of several concurrent callers wins.

        Returns:
            True if this call consumed the challenge
        """
        ...

    def link_customer(self, developer_id: str, customer_id: str) -> str:
        """
        Store customer_id unless a payment customer is already linked.

        Returns:
            The customer id linked to the developer after the call

        Raises:
            ConflictError: If customer_id belongs to another developer
        """
        ...

    def mark_email_verified(self, developer_id: str) -> None:
        """Set email_verified and advance the lifecycle to EmailVerified."""
        ...

    def attach_checkout(self, developer_id: str, subscription: SubscriptionRecord) -> bool:
        """
        Attach an unpaid checkout session and advance to PaymentPending.

        Returns:
            True if attached, False if a paid subscription is already recorded
        """
        ...

    def record_subscription(self, developer_id: str, subscription: SubscriptionRecord) -> bool:
        """
        Store a paid subscription and advance to Subscribed.

        Returns:
            True if this call recorded it, False if a paid subscription
            was already recorded
        """
        ...

    def advance_lifecycle(self, developer_id: str, state: LifecycleState) -> None: ...


class IdentifierRepository(Protocol):
    """Port interface for identifier (DID) persistence."""

    def create(self, identifier: IdentifierRecord) -> None:
        """
        Insert a new identifier.

        Raises:
            ConflictError: If the name or uri is already taken
        """
        ...

    def get_by_name(self, name: str) -> IdentifierRecord | None: ...

    def get_by_uri(self, uri: str) -> IdentifierRecord | None: ...

    def list_by_owner(self, owner_id: str) -> list[IdentifierRecord]: ...

    def update_document(self, uri: str, document: dict[str, Any]) -> None: ...

    def revoke(self, uri: str) -> bool:
        """
        Set the identifier's status to Revoked. Records are never deleted.

        Returns:
            True if the status changed, False if it was already Revoked
        """
        ...


class CredentialRepository(Protocol):
    """Port interface for credential (VC) persistence."""

    def create(self, credential: CredentialRecord) -> None:
        """
        Insert a new credential.

        Raises:
            ConflictError: If the uuid or issuance key is already taken
        """
        ...

    def get(self, uuid: str) -> CredentialRecord | None: ...

    def get_by_issuance_key(self, issuance_key: str) -> CredentialRecord | None: ...

    def list_by_owner(self, owner_id: str) -> list[CredentialRecord]: ...

    def mark_verified(self, uuid: str) -> bool:
        """
        Transition an UnVerified credential to Verified.

        Returns:
            True if the status changed
        """
        ...

    def revoke(self, uuid: str) -> bool:
        """
        Set the credential's status to Revoked. Records are never deleted.

        Returns:
            True if the status changed, False if it was already Revoked
        """
        ...


class NotificationDispatcher(Protocol):
    """Port interface for outbound email."""

    def send(self, to: str, subject: str, text_body: str, html_body: str) -> bool:
        """
        Deliver one message.

        Returns:
            True if the transport accepted the message
        """
        ...


class PaymentProvider(Protocol):
    """
    Port interface for the payment provider.

    Implementations raise UpstreamError on any provider failure or timeout.
    """

    def create_customer(self, name: str, email: str, idempotency_key: str | None = None) -> str:
        """
        Create a customer and return its provider id.

        Repeating a call with the same idempotency_key returns the
        customer created by the first call.
        """
        ...

    def create_checkout_session(self, price_id: str, customer_id: str) -> CheckoutSession: ...

    def retrieve_session(self, session_id: str) -> PaymentSession: ...

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription: ...


class IdentityRegistry(Protocol):
    """
    Port interface for decentralized identifier creation and resolution.

    create() is not idempotent: every call mints a new keypair and URI.
    """

    def create(self) -> RegisteredIdentifier: ...

    def resolve(self, uri: str) -> RegisteredIdentifier: ...


class CredentialRegistry(Protocol):
    """Port interface for verifiable credential primitives."""

    def create(self, draft: CredentialDraft) -> dict[str, Any]:
        """Build the credential data model; its "id" becomes the record uuid."""
        ...

    def sign(self, credential: dict[str, Any], signer_key: Any) -> str:
        """Sign the data model and return the compact JWT."""
        ...

    def verify(self, signed_jwt: str) -> bool: ...
