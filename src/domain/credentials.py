"""
Credential issuer - Signed, time-bounded verifiable credentials.

Two validity policies coexist: credentials issued after a confirmed
subscription last twelve months, ad-hoc credentials one month. Callers
pick the policy; the issuer never infers it.

The credential uuid is the data model's own id as produced by the
registry, not a locally generated value. Duplicate delivery of one
issuance event is caught twice: by the uuid uniqueness check, and (for
saga-driven issuance) by the caller-supplied issuance key, which is
stable across retries while the registry mints a new id on every call.
"""

import calendar
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .exceptions import ConflictError, ExpiredError, NotFoundError, UpstreamError, ValidationError
from .identity import is_did_uri
from .models import (
    CredentialDraft,
    CredentialRecord,
    CredentialStatus,
    IssuedCredential,
    utcnow,
)
from .ports import CredentialRegistry, CredentialRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidityPolicy:
    """How long an issued credential stays valid."""

    name: str
    months: int


SUBSCRIPTION_VALIDITY = ValidityPolicy("subscription", 12)
AD_HOC_VALIDITY = ValidityPolicy("ad-hoc", 1)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift moment by whole calendar months, clamping the day of month."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def check_validity_window(issuance_date: datetime, expiration_date: datetime) -> None:
    """
    Raises:
        ValidationError: If expiration_date is before issuance_date
    """
    if expiration_date < issuance_date:
        raise ValidationError("Expiration date cannot be before issuance date")


@dataclass
class CredentialIssuer:
    """Issues, verifies and confirms credentials through the credential registry."""

    registry: CredentialRegistry
    repository: CredentialRepository
    signer_key: Any
    replay_window_seconds: int = 30
    clock: Callable[[], datetime] = field(default=utcnow)

    def issue_credential(
        self,
        credential_type: str,
        issuer_uri: str,
        subject_uri: str,
        claims: dict[str, Any],
        owner_id: str,
        policy: ValidityPolicy = SUBSCRIPTION_VALIDITY,
        issuance_key: str | None = None,
    ) -> IssuedCredential:
        """
        Build, sign and persist a credential.

        Args:
            credential_type: Credential type added next to VerifiableCredential
            issuer_uri: DID of the issuer
            subject_uri: DID the credential is about
            claims: Subject claims embedded in the credential
            owner_id: Developer the credential belongs to
            policy: Validity window to apply
            issuance_key: Optional idempotency key, unique across credentials

        Returns:
            IssuedCredential with the persisted record and compact JWT

        Raises:
            ValidationError: If inputs are malformed or the window is inverted
            UpstreamError: If the registry fails or returns no id
            ConflictError: If the credential was already persisted
        """
        if not credential_type:
            raise ValidationError("Credential type is required")
        if not is_did_uri(issuer_uri):
            raise ValidationError("Issuer must be a DID uri")
        if not is_did_uri(subject_uri):
            raise ValidationError("Subject must be a DID uri")
        if not owner_id:
            raise ValidationError("Credential owner is required")

        issuance_date = self.clock().astimezone(timezone.utc).replace(microsecond=0)
        expiration_date = add_months(issuance_date, policy.months)
        check_validity_window(issuance_date, expiration_date)

        data_model = self.registry.create(
            CredentialDraft(
                credential_type=credential_type,
                issuer=issuer_uri,
                subject=subject_uri,
                issuance_date=issuance_date,
                expiration_date=expiration_date,
                claims=dict(claims),
            )
        )
        credential_id = data_model.get("id") if data_model else None
        if not credential_id:
            raise UpstreamError("Credential registry returned a data model without an id")

        issuance_date = _parse_date(data_model.get("issuanceDate"), issuance_date)
        expiration_date = _parse_date(data_model.get("expirationDate"), expiration_date)
        check_validity_window(issuance_date, expiration_date)

        if self.repository.get(credential_id) is not None:
            raise ConflictError(f"Credential {credential_id} already exists")

        signed_jwt = self.registry.sign(data_model, self.signer_key)

        types = data_model.get("type") or [credential_type]
        record = CredentialRecord(
            uuid=credential_id,
            issuer=issuer_uri,
            subject=subject_uri,
            issuance_date=issuance_date,
            expiration_date=expiration_date,
            credential_type=list(types) if isinstance(types, list) else [types],
            credential=dict(data_model.get("credentialSubject") or {}),
            owner_id=owner_id,
            signed_jwt=signed_jwt,
            status=CredentialStatus.UNVERIFIED,
            issuance_key=issuance_key,
            created_at=self.clock(),
        )
        self.repository.create(record)
        logger.info(
            "Credential %s issued to %s under %s policy", credential_id, subject_uri, policy.name
        )
        return IssuedCredential(record=record, signed_jwt=signed_jwt)

    def ensure_credential(
        self,
        issuance_key: str,
        credential_type: str,
        issuer_uri: str,
        subject_uri: str,
        claims: dict[str, Any],
        owner_id: str,
        policy: ValidityPolicy = SUBSCRIPTION_VALIDITY,
    ) -> tuple[IssuedCredential, bool]:
        """
        Issue the credential identified by issuance_key at most once.

        Returns:
            (issued, created) where created is False when a credential with
            this key already existed
        """
        existing = self.repository.get_by_issuance_key(issuance_key)
        if existing is not None:
            return IssuedCredential(record=existing, signed_jwt=existing.signed_jwt), False
        try:
            issued = self.issue_credential(
                credential_type,
                issuer_uri,
                subject_uri,
                claims,
                owner_id,
                policy=policy,
                issuance_key=issuance_key,
            )
            return issued, True
        except ConflictError:
            winner = self.repository.get_by_issuance_key(issuance_key)
            if winner is None:
                raise
            logger.warning("Lost credential issuance race for key %s; reusing winner", issuance_key)
            return IssuedCredential(record=winner, signed_jwt=winner.signed_jwt), False

    def verify_credential(self, signed_jwt: str) -> bool:
        """Check a compact credential with the registry. Read-only."""
        if not signed_jwt:
            raise ValidationError("Signed credential is required")
        return self.registry.verify(signed_jwt)

    def confirm_verification(
        self, uuid: str, signed_jwt: str, timestamp: float | None
    ) -> tuple[CredentialRecord, bool]:
        """
        Mark a credential Verified after an end-user verification request.

        The request timestamp (seconds since the epoch) must be within the
        replay window on either side of the current time; stale and
        future-dated requests are rejected before the JWT is looked at.
        Confirming an already Verified credential is a no-op; a Revoked or
        Expired credential is never confirmed.

        Returns:
            (record, changed) where changed is True if this call performed
            the UnVerified -> Verified transition

        Raises:
            ValidationError: If inputs are missing or the JWT does not verify
            ExpiredError: If timestamp is outside the replay window
            NotFoundError: If no credential has this uuid
        """
        if not uuid or not signed_jwt:
            raise ValidationError("Credential id and signed credential are required")
        if timestamp is None:
            raise ValidationError("Request timestamp is required")

        age = self.clock().timestamp() - float(timestamp)
        if abs(age) > self.replay_window_seconds:
            raise ExpiredError("Verification request expired")

        record = self.repository.get(uuid)
        if record is None:
            raise NotFoundError(f"Credential {uuid} not found")
        if record.signed_jwt != signed_jwt:
            raise ValidationError("Signed credential does not match credential id")
        if not self.registry.verify(signed_jwt):
            raise ValidationError("Credential verification failed")

        if record.status is CredentialStatus.VERIFIED:
            return record, False
        if record.status is not CredentialStatus.UNVERIFIED:
            raise ValidationError(f"Credential is {record.status.value}")

        changed = self.repository.mark_verified(uuid)
        if not changed:
            current = self.repository.get(uuid)
            if current is None or current.status is not CredentialStatus.VERIFIED:
                raise ValidationError("Credential is no longer UnVerified")
            return current, False
        logger.info("Credential %s verified", uuid)
        record.status = CredentialStatus.VERIFIED
        return record, True

    def revoke_credential(self, uuid: str) -> tuple[CredentialRecord, bool]:
        """
        Move a credential to Revoked. The record and its JWT are kept.

        Returns:
            (record, changed) where changed is False if it was already revoked

        Raises:
            ValidationError: If uuid is missing
            NotFoundError: If no credential has this uuid
        """
        if not uuid:
            raise ValidationError("Credential id is required")
        changed = self.repository.revoke(uuid)
        record = self.repository.get(uuid)
        if record is None:
            raise NotFoundError(f"Credential {uuid} not found")
        if changed:
            logger.info("Credential %s revoked", uuid)
        return record, changed

    def credentials_for(self, owner_id: str) -> list[CredentialRecord]:
        return self.repository.list_by_owner(owner_id)


def _parse_date(value: Any, default: datetime) -> datetime:
    if not value:
        return default
    if isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise UpstreamError(f"Credential registry returned a malformed date: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
