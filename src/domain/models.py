"""
Domain records - State owned by the onboarding saga.

This module defines the lifecycle enums and the dataclass records that
flow between the saga, its components and the persistence ports. Records
are plain data; adapters decide how they are stored.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class LifecycleState(str, Enum):
    """
    Onboarding lifecycle of a developer record.

    State Transitions (forward-only):
    - REGISTERED -> CODE_ISSUED        (challenge sent)
    - CODE_ISSUED -> EMAIL_VERIFIED    (correct code, customer created)
    - EMAIL_VERIFIED -> PAYMENT_PENDING (checkout session attached)
    - PAYMENT_PENDING -> SUBSCRIBED    (provider reports "paid")
    - SUBSCRIBED -> IDENTIFIER_ISSUED  (DID created or reused)
    - IDENTIFIER_ISSUED -> CREDENTIAL_ISSUED (VC issued and sent)

    CREDENTIAL_ISSUED is the terminal success state. Re-running the event
    that produced a state is a no-op; DeveloperRecord.advance_to never moves
    a record backwards.
    """

    REGISTERED = "Registered"
    CODE_ISSUED = "CodeIssued"
    EMAIL_VERIFIED = "EmailVerified"
    PAYMENT_PENDING = "PaymentPending"
    SUBSCRIBED = "Subscribed"
    IDENTIFIER_ISSUED = "IdentifierIssued"
    CREDENTIAL_ISSUED = "CredentialIssued"

    @property
    def rank(self) -> int:
        return _LIFECYCLE_ORDER.index(self)

    def at_least(self, other: "LifecycleState") -> bool:
        return self.rank >= other.rank


_LIFECYCLE_ORDER = list(LifecycleState)


class ExtensionType(str, Enum):
    """Kind of domain a developer registers."""

    AI = "ai"
    SERVICE = "service"


class PlanType(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"


class IdentifierType(str, Enum):
    USER = "user"
    SERVICE = "service"
    ORGANIZATION = "organization"
    DEVICE = "device"


class IdentifierStatus(str, Enum):
    CREATED = "Created"
    ACTIVE = "Active"
    REVOKED = "Revoked"
    EXPIRED = "Expired"


class CredentialStatus(str, Enum):
    UNVERIFIED = "UnVerified"
    VERIFIED = "Verified"
    REVOKED = "Revoked"
    EXPIRED = "Expired"


class ChallengeResult(Enum):
    """
    Result of checking a verification code.

    Only VALID is reported as success to callers; the other values exist so
    the failure reason can be logged without being disclosed.
    """

    VALID = "valid"
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    NOT_PENDING = "not_pending"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    PENDING = "pending"
    PARTIAL = "partial"
    ERROR = "error"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"
    EXPIRED = "expired"


@dataclass
class DeveloperProfile:
    """Registration input as supplied by the developer."""

    first_name: str
    last_name: str
    email: str
    domain_name: str
    extension_type: str
    company_name: str = ""
    description: str = ""
    web_link: str = ""
    linked_in: str = ""
    github: str = ""
    hugging_face: str = ""
    extension_name: str = ""


@dataclass
class SubscriptionRecord:
    """Payment relationship snapshot embedded in a developer record."""

    session_id: str
    subscription_id: str | None = None
    plan_id: str | None = None
    plan_type: PlanType | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    duration_days: float | None = None

    @property
    def is_paid(self) -> bool:
        return self.subscription_id is not None


@dataclass
class DeveloperRecord:
    """A prospective API consumer moving through onboarding."""

    id: str
    email: str
    first_name: str
    last_name: str
    domain_name: str
    extension_type: ExtensionType
    extension_name: str = ""
    company_name: str = ""
    description: str = ""
    web_link: str = ""
    linked_in: str = ""
    github: str = ""
    hugging_face: str = ""
    email_verified: bool = False
    verification_code_hash: str | None = None
    verification_code_expiry: datetime | None = None
    payment_customer_id: str | None = None
    subscription: SubscriptionRecord | None = None
    lifecycle_state: LifecycleState = LifecycleState.REGISTERED
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def identifier_name(self) -> str:
        """Logical DID name, e.g. "acme.ai"."""
        extension = self.extension_name or self.extension_type.value
        return f"{self.domain_name}.{extension}"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def advance_to(self, state: LifecycleState) -> bool:
        """
        Move the record forward to state.

        Returns True if the state changed, False if the record was already
        at or beyond state.
        """
        if self.lifecycle_state.at_least(state):
            return False
        self.lifecycle_state = state
        return True


@dataclass
class IdentifierRecord:
    """Registry entry for one decentralized identifier."""

    name: str
    uri: str
    document: dict[str, Any]
    owner_id: str
    identifier_type: IdentifierType = IdentifierType.USER
    description: str = ""
    status: IdentifierStatus = IdentifierStatus.CREATED
    key_material: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def public_view(self) -> dict[str, str]:
        """Projection safe to return to API callers."""
        return {"uri": self.uri}


@dataclass
class CredentialRecord:
    """An issued verifiable credential."""

    uuid: str
    issuer: str
    subject: str
    issuance_date: datetime
    expiration_date: datetime
    credential_type: list[str]
    credential: dict[str, Any]
    owner_id: str
    signed_jwt: str
    status: CredentialStatus = CredentialStatus.UNVERIFIED
    issuance_key: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def public_view(self) -> dict[str, Any]:
        return {
            "id": self.uuid,
            "type": list(self.credential_type),
            "issuanceDate": _isoformat(self.issuance_date),
            "expirationDate": _isoformat(self.expiration_date),
            "status": self.status.value,
        }


@dataclass
class IssuedCredential:
    """A credential record together with its compact signed form."""

    record: CredentialRecord
    signed_jwt: str


@dataclass
class CredentialDraft:
    """Input to CredentialRegistry.create()."""

    credential_type: str
    issuer: str
    subject: str
    issuance_date: datetime
    expiration_date: datetime
    claims: dict[str, Any]


@dataclass
class RegisteredIdentifier:
    """What the identity registry hands back for a created or resolved DID."""

    uri: str
    document: dict[str, Any]
    key_material: dict[str, Any] | None = None


@dataclass
class CheckoutSession:
    id: str
    url: str


@dataclass
class PaymentSession:
    """Provider view of a checkout session."""

    id: str
    payment_status: str
    subscription_id: str | None = None
    customer_id: str | None = None


@dataclass
class ProviderSubscription:
    """Provider view of a subscription and its price."""

    id: str
    status: str
    plan_id: str
    price_amount: int
    current_period_start: datetime
    current_period_end: datetime


@dataclass
class CheckoutResult:
    """Checkout session plus whether it was attached to the developer record."""

    session: CheckoutSession
    recorded: bool = True


@dataclass
class PaymentConfirmation:
    developer: DeveloperRecord
    subscription: SubscriptionRecord
    newly_confirmed: bool


@dataclass(frozen=True)
class Outcome:
    """
    Tagged result returned by every saga entry point.

    Transports map status (and error, for failures) to their own codes
    without the domain depending on any transport.
    """

    status: OutcomeStatus
    message: str = ""
    data: dict[str, Any] | None = None
    error: ErrorKind | None = None
    step: str | None = None

    @classmethod
    def success(cls, message: str = "", data: dict[str, Any] | None = None) -> "Outcome":
        return cls(OutcomeStatus.SUCCESS, message, data)

    @classmethod
    def pending(cls, message: str = "", data: dict[str, Any] | None = None) -> "Outcome":
        return cls(OutcomeStatus.PENDING, message, data)

    @classmethod
    def partial(
        cls,
        message: str,
        step: str,
        error: ErrorKind | None = None,
        data: dict[str, Any] | None = None,
    ) -> "Outcome":
        return cls(OutcomeStatus.PARTIAL, message, data, error, step)

    @classmethod
    def failure(cls, error: ErrorKind, message: str) -> "Outcome":
        return cls(OutcomeStatus.ERROR, message, None, error)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


def _isoformat(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
