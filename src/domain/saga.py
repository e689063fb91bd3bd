"""
Onboarding saga - Coordinator of the developer issuance pipeline.

The saga sequences registration, email verification, payment
confirmation, identifier creation and credential issuance across the
payment provider, the identity/credential registries and the
notification dispatcher. There is no distributed transaction and no
workflow engine: the persisted DeveloperRecord, and its lifecycle state in
particular, is the only coordination point.

Lifecycle
=========

    Registered -> CodeIssued -> EmailVerified -> PaymentPending
        -> Subscribed -> IdentifierIssued -> CredentialIssued

The saga is level-triggered. Every entry point can be re-invoked; a step
whose effect is already persisted is skipped or reused rather than
repeated:

- identifiers are looked up by logical name before the registry is called
- credentials are looked up by issuance key (the checkout session for
  paid issuance) before the registry is called
- the payment confirmation returns the stored snapshot for a session that
  was already confirmed

Failure policy
==============

Entry points never raise domain errors; they return an Outcome. A failure
inside the issuance continuation (after payment was recorded) is a
PARTIAL outcome naming the failed step. Nothing is rolled back: a refund
after a failed credential issuance is an operator decision, and resume()
re-runs the continuation from the persisted state.

Notification failures are logged and otherwise ignored.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from . import notifications
from .credentials import AD_HOC_VALIDITY, SUBSCRIPTION_VALIDITY, CredentialIssuer, ValidityPolicy
from .exceptions import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    OnboardingError,
    ValidationError,
)
from .identity import IdentityIssuer
from .models import (
    CredentialStatus,
    DeveloperProfile,
    DeveloperRecord,
    ErrorKind,
    IdentifierRecord,
    IdentifierStatus,
    IdentifierType,
    LifecycleState,
    Outcome,
    utcnow,
)
from .ports import DeveloperRepository, NotificationDispatcher, PaymentProvider
from .registration import RegistrationService
from .subscription import SubscriptionCoordinator
from .verification import VerificationCodeManager

logger = logging.getLogger(__name__)

STEP_CHALLENGE = "challenge"
STEP_IDENTIFIER = "identifier"
STEP_CREDENTIAL = "credential"
STEP_CHECKOUT = "checkout"

INVALID_CODE_MESSAGE = "Invalid or expired verification code"
UPSTREAM_MESSAGE = "A dependent service is unavailable, please retry later"

_ERROR_KINDS: dict[type[OnboardingError], ErrorKind] = {
    ValidationError: ErrorKind.VALIDATION,
    ConflictError: ErrorKind.CONFLICT,
    NotFoundError: ErrorKind.NOT_FOUND,
    ExpiredError: ErrorKind.EXPIRED,
}


def error_kind(exc: OnboardingError) -> ErrorKind:
    """Classify a domain exception; anything unlisted is an upstream failure."""
    for exc_type, kind in _ERROR_KINDS.items():
        if isinstance(exc, exc_type):
            return kind
    return ErrorKind.UPSTREAM


@dataclass
class OnboardingSaga:
    """
    Top-level coordinator for developer onboarding.

    Collaborators are injected; the saga holds no state of its own beyond
    configuration.
    """

    developers: DeveloperRepository
    registration: RegistrationService
    codes: VerificationCodeManager
    identities: IdentityIssuer
    credentials: CredentialIssuer
    subscriptions: SubscriptionCoordinator
    payments: PaymentProvider
    notifier: NotificationDispatcher
    issuer_uri: str
    subscription_policy: ValidityPolicy = SUBSCRIPTION_VALIDITY
    direct_policy: ValidityPolicy = AD_HOC_VALIDITY
    profile_base_url: str = ""
    clock: Callable[[], datetime] = field(default=utcnow)

    # ------------------------------------------------------------------
    # Registered -> CodeIssued

    def register(self, profile: DeveloperProfile) -> Outcome:
        """Create the developer record and send the first verification code."""
        try:
            developer = self.registration.register(profile)
        except OnboardingError as exc:
            return self._failure(exc, "register")

        data = {"id": developer.id, "email": developer.email, "domain_name": developer.identifier_name}
        try:
            data.update(self._send_challenge(developer))
        except OnboardingError as exc:
            return self._partial(developer, STEP_CHALLENGE, exc, data)
        return Outcome.success("Developer registered", data)

    def issue_challenge(self, email: str) -> Outcome:
        """Send a fresh verification code, replacing any pending one."""
        try:
            developer = self._developer_by_email(email)
            if not developer.email_verified:
                data = self._send_challenge(developer)
                return Outcome.success("Please check your email for the verification code", data)
        except ConflictError:
            logger.info("Email %s was verified before a new code could be stored", email)
        except OnboardingError as exc:
            return self._failure(exc, "issue_challenge")
        return Outcome.success("Email already verified", {"email_verified": True})

    # ------------------------------------------------------------------
    # CodeIssued -> EmailVerified

    def verify_challenge(self, email: str, code: str) -> Outcome:
        """
        Check code and, on success, mark the email verified.

        The challenge is consumed before the payment customer is created,
        so a code is usable at most once even when customer creation fails
        and the client retries. In that case email_verified stays false and
        the client requests a new code.

        A retry never creates a second customer: the provider call carries
        an idempotency key derived from the developer id, and the customer
        id is linked to the record before the email is marked verified.
        """
        developer = self.developers.get_by_email(RegistrationService.normalize_email(email or ""))
        valid = self.codes.verify_challenge(developer, code)
        if developer is None or not valid:
            return Outcome.failure(ErrorKind.VALIDATION, INVALID_CODE_MESSAGE)
        if not self.codes.invalidate(developer):
            logger.info("Challenge for developer %s already consumed", developer.id)
            return Outcome.failure(ErrorKind.VALIDATION, INVALID_CODE_MESSAGE)

        try:
            customer_id = developer.payment_customer_id or self.payments.create_customer(
                developer.full_name,
                developer.email,
                idempotency_key=_customer_idempotency_key(developer),
            )
            customer_id = self.developers.link_customer(developer.id, customer_id)
            self.developers.mark_email_verified(developer.id)
        except OnboardingError as exc:
            return self._failure(exc, "verify_challenge", developer)

        logger.info("Developer %s verified email", developer.id)
        return Outcome.success("Email verified", {"customer_id": customer_id})

    # ------------------------------------------------------------------
    # EmailVerified -> PaymentPending

    def create_checkout_session(self, plan_key: str, customer_id: str) -> Outcome:
        try:
            result = self.subscriptions.create_checkout_session(plan_key, customer_id)
        except OnboardingError as exc:
            return self._failure(exc, "create_checkout_session")

        data = {"session_id": result.session.id, "url": result.session.url}
        if not result.recorded:
            return Outcome.partial(
                "Session created but developer record was not updated", STEP_CHECKOUT, data=data
            )
        return Outcome.success("Session created", data)

    # ------------------------------------------------------------------
    # PaymentPending -> Subscribed -> IdentifierIssued -> CredentialIssued

    def confirm_payment(self, session_id: str, customer_id: str) -> Outcome:
        """
        Record a paid subscription and run the issuance continuation.

        Returns PENDING (not an error) while the provider has not reported
        the session as paid.
        """
        try:
            confirmation = self.subscriptions.confirm_payment(session_id, customer_id)
        except OnboardingError as exc:
            return self._failure(exc, "confirm_payment")

        if confirmation is None:
            return Outcome.pending("Payment not completed", {"session_id": session_id})

        developer = confirmation.developer
        if confirmation.newly_confirmed:
            notifications.deliver(
                self.notifier,
                developer.email,
                notifications.subscription_confirmed_message(confirmation.subscription),
            )
        return self._continue_issuance(
            developer, self.subscription_policy, _subscription_issuance_key(session_id)
        )

    def resume(self, email: str) -> Outcome:
        """
        Re-run the pipeline for developer email from its persisted state.

        Operator entry point for developers left behind by a PARTIAL outcome.
        """
        try:
            developer = self._developer_by_email(email)
        except OnboardingError as exc:
            return self._failure(exc, "resume")

        state = developer.lifecycle_state
        subscription = developer.subscription
        if subscription is not None and subscription.is_paid:
            return self._continue_issuance(
                developer,
                self.subscription_policy,
                _subscription_issuance_key(subscription.session_id),
            )
        if subscription is not None and state.at_least(LifecycleState.PAYMENT_PENDING):
            return self.confirm_payment(subscription.session_id, developer.payment_customer_id or "")
        if state.at_least(LifecycleState.IDENTIFIER_ISSUED):
            return self._continue_issuance(
                developer, self.direct_policy, _direct_issuance_key(developer)
            )
        return Outcome.failure(
            ErrorKind.VALIDATION, f"Nothing to resume for a developer in state {state.value}"
        )

    def issue_direct(self, email: str) -> Outcome:
        """
        Issue identifier and credential without a payment.

        Manual path for verified developers; uses the ad-hoc validity policy.
        """
        try:
            developer = self._developer_by_email(email)
            if not developer.email_verified:
                raise ValidationError("Email address is not verified")
        except OnboardingError as exc:
            return self._failure(exc, "issue_direct")
        return self._continue_issuance(developer, self.direct_policy, _direct_issuance_key(developer))

    # ------------------------------------------------------------------
    # Credential verification

    def verify_credential(self, signed_jwt: str) -> Outcome:
        """Check a signed credential. Read-only: no status is persisted."""
        try:
            verified = self.credentials.verify_credential(signed_jwt)
        except OnboardingError as exc:
            return self._failure(exc, "verify_credential")
        message = "Credential verified" if verified else "Credential verification failed"
        return Outcome.success(message, {"verified": verified})

    def confirm_credential(self, uuid: str, signed_jwt: str, timestamp: float | None) -> Outcome:
        """Mark a credential Verified and tell its owner."""
        try:
            record, changed = self.credentials.confirm_verification(uuid, signed_jwt, timestamp)
        except OnboardingError as exc:
            return self._failure(exc, "confirm_credential")

        if changed:
            developer = self.developers.get(record.owner_id)
            if developer is not None:
                notifications.deliver(
                    self.notifier,
                    developer.email,
                    notifications.credential_verified_message(
                        self._profile_url(developer), record.uuid
                    ),
                )
        return Outcome.success("Credential verified", {"verified": True, "uuid": record.uuid})

    # ------------------------------------------------------------------
    # Identifier and credential maintenance, lookup

    def refresh_identifier(self, uri: str) -> Outcome:
        try:
            record = self.identities.resolve_and_update(uri)
        except OnboardingError as exc:
            return self._failure(exc, "refresh_identifier")
        return Outcome.success("Identifier updated", record.public_view())

    def revoke_identifier(self, uri: str) -> Outcome:
        """Operator revocation of an identifier. Its name stays reserved."""
        try:
            record, changed = self.identities.revoke_identifier(uri)
        except OnboardingError as exc:
            return self._failure(exc, "revoke_identifier")
        message = "Identifier revoked" if changed else "Identifier already revoked"
        return Outcome.success(message, {"uri": record.uri, "status": record.status.value})

    def revoke_credential(self, uuid: str) -> Outcome:
        """Operator revocation of a credential. Revoked credentials cannot be confirmed."""
        try:
            record, changed = self.credentials.revoke_credential(uuid)
        except OnboardingError as exc:
            return self._failure(exc, "revoke_credential")
        message = "Credential revoked" if changed else "Credential already revoked"
        return Outcome.success(message, record.public_view())

    def list_assets(self, email: str) -> Outcome:
        """Identifiers and credentials owned by developer email, revoked ones included."""
        try:
            developer = self._developer_by_email(email)
        except OnboardingError as exc:
            return self._failure(exc, "list_assets")
        identifiers = [
            {"name": i.name, "uri": i.uri, "status": i.status.value}
            for i in self.identities.identifiers_for(developer.id)
        ]
        credentials = [
            {**c.public_view(), "subject": c.subject}
            for c in self.credentials.credentials_for(developer.id)
        ]
        return Outcome.success(
            "Assets fetched",
            {
                "developer_id": developer.id,
                "lifecycle_state": developer.lifecycle_state.value,
                "identifiers": identifiers,
                "credentials": credentials,
            },
        )

    def profile(self, identifier_name: str) -> Outcome:
        """Public profile of the developer owning identifier_name."""
        identifier = self.identities.find_by_name(identifier_name or "")
        if identifier is not None and identifier.status is IdentifierStatus.REVOKED:
            identifier = None
        developer = self.developers.get(identifier.owner_id) if identifier is not None else None
        if identifier is None or developer is None:
            return Outcome.failure(ErrorKind.NOT_FOUND, "Developer not found")

        credentials = [
            c
            for c in self.credentials.credentials_for(developer.id)
            if c.subject == identifier.uri and c.status is not CredentialStatus.REVOKED
        ]
        latest = max(credentials, key=lambda c: c.issuance_date, default=None)
        return Outcome.success(
            "Profile fetched",
            {
                "first_name": developer.first_name,
                "last_name": developer.last_name,
                "company_name": developer.company_name,
                "description": developer.description,
                "web_link": developer.web_link,
                "linked_in": developer.linked_in,
                "github": developer.github,
                "hugging_face": developer.hugging_face,
                "domain_name": developer.domain_name,
                "extension_type": developer.extension_type.value,
                "extension_name": developer.extension_name,
                "did": identifier.uri,
                "vc_jwt": latest.signed_jwt if latest else "",
                "uuid": latest.uuid if latest else "",
            },
        )

    # ------------------------------------------------------------------
    # Internals

    def _continue_issuance(
        self, developer: DeveloperRecord, policy: ValidityPolicy, issuance_key: str
    ) -> Outcome:
        """
        Identifier then credential, each idempotent.

        Safe to re-run after a crash between any two steps.
        """
        try:
            identifier, created = self.identities.ensure_identifier(
                developer.identifier_name,
                developer.id,
                IdentifierType.SERVICE,
                developer.description,
            )
            if developer.advance_to(LifecycleState.IDENTIFIER_ISSUED):
                self.developers.advance_lifecycle(developer.id, LifecycleState.IDENTIFIER_ISSUED)
        except OnboardingError as exc:
            return self._partial(developer, STEP_IDENTIFIER, exc)
        if not created:
            logger.info("Reusing identifier %s for developer %s", identifier.name, developer.id)

        try:
            issued, created = self.credentials.ensure_credential(
                issuance_key,
                developer.extension_type.value,
                self.issuer_uri,
                identifier.uri,
                self._claims(developer),
                developer.id,
                policy=policy,
            )
        except OnboardingError as exc:
            return self._partial(developer, STEP_CREDENTIAL, exc, {"identifier": identifier.public_view()})

        if created or not developer.lifecycle_state.at_least(LifecycleState.CREDENTIAL_ISSUED):
            notifications.deliver(
                self.notifier,
                developer.email,
                notifications.credentials_issued_message(identifier, issued.record, issued.signed_jwt),
            )

        data = self._issuance_data(identifier, issued.record.public_view(), issued.signed_jwt)
        try:
            if developer.advance_to(LifecycleState.CREDENTIAL_ISSUED):
                self.developers.advance_lifecycle(developer.id, LifecycleState.CREDENTIAL_ISSUED)
        except OnboardingError as exc:
            return self._partial(developer, STEP_CREDENTIAL, exc, data)

        return Outcome.success("Credentials issued", data)

    def _send_challenge(self, developer: DeveloperRecord) -> dict[str, Any]:
        code = self.codes.issue_challenge(developer)
        delivered = notifications.deliver(
            self.notifier,
            developer.email,
            notifications.verification_code_message(code, self.codes.ttl_seconds),
        )
        return {"code_sent": delivered, "expires_in_seconds": self.codes.ttl_seconds}

    def _developer_by_email(self, email: str) -> DeveloperRecord:
        normalized = RegistrationService.normalize_email(email or "")
        if not normalized:
            raise ValidationError("Email is required")
        developer = self.developers.get_by_email(normalized)
        if developer is None:
            raise NotFoundError("Developer not found")
        return developer

    def _claims(self, developer: DeveloperRecord) -> dict[str, Any]:
        return {
            "email": developer.email,
            "company": developer.company_name,
            "domain": developer.identifier_name,
            "startDate": self.clock().strftime("%Y-%m-%dT%H:%M:%SZ"),
        }

    def _profile_url(self, developer: DeveloperRecord) -> str:
        return f"{self.profile_base_url.rstrip('/')}/profile?name={developer.identifier_name}"

    @staticmethod
    def _issuance_data(
        identifier: IdentifierRecord, credential: dict[str, Any], signed_jwt: str
    ) -> dict[str, Any]:
        return {"identifier": identifier.public_view(), "credential": credential, "vc_jwt": signed_jwt}

    def _failure(
        self, exc: OnboardingError, operation: str, developer: DeveloperRecord | None = None
    ) -> Outcome:
        kind = error_kind(exc)
        developer_id = developer.id if developer is not None else None
        if kind is ErrorKind.UPSTREAM:
            logger.error(
                "%s failed for developer %s: %s", operation, developer_id, exc, exc_info=exc
            )
            return Outcome.failure(kind, UPSTREAM_MESSAGE)
        logger.info("%s rejected for developer %s: %s", operation, developer_id, exc)
        return Outcome.failure(kind, str(exc))

    def _partial(
        self,
        developer: DeveloperRecord,
        step: str,
        exc: OnboardingError,
        data: dict[str, Any] | None = None,
    ) -> Outcome:
        kind = error_kind(exc)
        logger.error(
            "Onboarding step %s failed for developer %s (state %s): %s",
            step,
            developer.id,
            developer.lifecycle_state.value,
            exc,
            exc_info=exc,
        )
        message = UPSTREAM_MESSAGE if kind is ErrorKind.UPSTREAM else str(exc)
        payload = {"developer_id": developer.id, "lifecycle_state": developer.lifecycle_state.value}
        payload.update(data or {})
        return Outcome.partial(f"Step {step} failed: {message}", step, kind, payload)


def _subscription_issuance_key(session_id: str) -> str:
    return f"subscription:{session_id}"


def _direct_issuance_key(developer: DeveloperRecord) -> str:
    return f"direct:{developer.id}"


def _customer_idempotency_key(developer: DeveloperRecord) -> str:
    return f"customer:{developer.id}"
