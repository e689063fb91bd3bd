"""
In-memory repository adapters - Development mode and test doubles.

Each repository guards its dictionaries with a single lock and hands out
deep copies, so callers only ever hold snapshots. Writes are step-scoped
like their PostgreSQL counterparts: the condition is checked and the
owned fields are changed under the lock, which makes them as race-free as
the conditional UPDATEs and constraints they stand in for.
"""

import copy
import threading
from datetime import datetime
from typing import Any

from src.domain.exceptions import ConflictError, NotFoundError
from src.domain.models import (
    CredentialRecord,
    CredentialStatus,
    DeveloperRecord,
    IdentifierRecord,
    IdentifierStatus,
    LifecycleState,
    SubscriptionRecord,
    utcnow,
)


class InMemoryDeveloperRepository:
    """Implements DeveloperRepository protocol in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, DeveloperRecord] = {}

    def create(self, developer: DeveloperRecord) -> None:
        with self._lock:
            if any(d.email == developer.email for d in self._by_id.values()):
                raise ConflictError("Email already registered")
            if developer.id in self._by_id:
                raise ConflictError(f"Developer {developer.id} already exists")
            self._by_id[developer.id] = copy.deepcopy(developer)

    def get(self, developer_id: str) -> DeveloperRecord | None:
        with self._lock:
            return copy.deepcopy(self._by_id.get(developer_id))

    def get_by_email(self, email: str) -> DeveloperRecord | None:
        with self._lock:
            return copy.deepcopy(self._find(lambda d: d.email == email))

    def get_by_customer_id(self, customer_id: str) -> DeveloperRecord | None:
        with self._lock:
            return copy.deepcopy(self._find(lambda d: d.payment_customer_id == customer_id))

    def store_challenge(self, developer_id: str, code_hash: str, expiry: datetime) -> bool:
        with self._lock:
            stored = self._require(developer_id)
            if stored.email_verified:
                return False
            stored.verification_code_hash = code_hash
            stored.verification_code_expiry = expiry
            self._advance(stored, LifecycleState.CODE_ISSUED)
            return True

    def consume_challenge(self, developer_id: str, code_hash: str, sentinel: str) -> bool:
        with self._lock:
            stored = self._by_id.get(developer_id)
            if stored is None or stored.verification_code_hash != code_hash:
                return False
            stored.verification_code_hash = sentinel
            return True

    def link_customer(self, developer_id: str, customer_id: str) -> str:
        with self._lock:
            stored = self._require(developer_id)
            if stored.payment_customer_id:
                return stored.payment_customer_id
            if any(d.payment_customer_id == customer_id for d in self._by_id.values()):
                raise ConflictError("Payment customer already linked to another developer")
            stored.payment_customer_id = customer_id
            stored.updated_at = utcnow()
            return customer_id

    def mark_email_verified(self, developer_id: str) -> None:
        with self._lock:
            stored = self._require(developer_id)
            stored.email_verified = True
            self._advance(stored, LifecycleState.EMAIL_VERIFIED)

    def attach_checkout(self, developer_id: str, subscription: SubscriptionRecord) -> bool:
        with self._lock:
            stored = self._require(developer_id)
            if stored.subscription is not None and stored.subscription.is_paid:
                return False
            stored.subscription = copy.deepcopy(subscription)
            self._advance(stored, LifecycleState.PAYMENT_PENDING)
            return True

    def record_subscription(self, developer_id: str, subscription: SubscriptionRecord) -> bool:
        with self._lock:
            stored = self._require(developer_id)
            if stored.subscription is not None and stored.subscription.is_paid:
                return False
            stored.subscription = copy.deepcopy(subscription)
            self._advance(stored, LifecycleState.SUBSCRIBED)
            return True

    def advance_lifecycle(self, developer_id: str, state: LifecycleState) -> None:
        with self._lock:
            self._advance(self._require(developer_id), state)

    def _require(self, developer_id: str) -> DeveloperRecord:
        stored = self._by_id.get(developer_id)
        if stored is None:
            raise NotFoundError(f"Developer {developer_id} not found")
        return stored

    @staticmethod
    def _advance(stored: DeveloperRecord, state: LifecycleState) -> None:
        stored.advance_to(state)
        stored.updated_at = utcnow()

    def _find(self, predicate: Any) -> DeveloperRecord | None:
        return next((d for d in self._by_id.values() if predicate(d)), None)


class InMemoryIdentifierRepository:
    """Implements IdentifierRepository protocol in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_name: dict[str, IdentifierRecord] = {}

    def create(self, identifier: IdentifierRecord) -> None:
        with self._lock:
            if identifier.name in self._by_name or any(
                i.uri == identifier.uri for i in self._by_name.values()
            ):
                raise ConflictError(f"Identifier {identifier.name} already exists")
            self._by_name[identifier.name] = copy.deepcopy(identifier)

    def get_by_name(self, name: str) -> IdentifierRecord | None:
        with self._lock:
            return copy.deepcopy(self._by_name.get(name))

    def get_by_uri(self, uri: str) -> IdentifierRecord | None:
        with self._lock:
            found = next((i for i in self._by_name.values() if i.uri == uri), None)
            return copy.deepcopy(found)

    def list_by_owner(self, owner_id: str) -> list[IdentifierRecord]:
        with self._lock:
            owned = [i for i in self._by_name.values() if i.owner_id == owner_id]
            return copy.deepcopy(sorted(owned, key=lambda i: i.created_at))

    def update_document(self, uri: str, document: dict[str, Any]) -> None:
        with self._lock:
            found = self._require(uri)
            found.document = copy.deepcopy(document)
            found.updated_at = utcnow()

    def revoke(self, uri: str) -> bool:
        with self._lock:
            found = self._require(uri)
            if found.status is IdentifierStatus.REVOKED:
                return False
            found.status = IdentifierStatus.REVOKED
            found.updated_at = utcnow()
            return True

    def _require(self, uri: str) -> IdentifierRecord:
        found = next((i for i in self._by_name.values() if i.uri == uri), None)
        if found is None:
            raise NotFoundError(f"Identifier {uri} not found")
        return found

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_name)


class InMemoryCredentialRepository:
    """Implements CredentialRepository protocol in process memory."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_uuid: dict[str, CredentialRecord] = {}

    def create(self, credential: CredentialRecord) -> None:
        with self._lock:
            if credential.uuid in self._by_uuid:
                raise ConflictError(f"Credential {credential.uuid} already exists")
            if credential.issuance_key is not None and any(
                c.issuance_key == credential.issuance_key for c in self._by_uuid.values()
            ):
                raise ConflictError(f"Credential for {credential.issuance_key} already exists")
            self._by_uuid[credential.uuid] = copy.deepcopy(credential)

    def get(self, uuid: str) -> CredentialRecord | None:
        with self._lock:
            return copy.deepcopy(self._by_uuid.get(uuid))

    def get_by_issuance_key(self, issuance_key: str) -> CredentialRecord | None:
        with self._lock:
            found = next(
                (c for c in self._by_uuid.values() if c.issuance_key == issuance_key), None
            )
            return copy.deepcopy(found)

    def list_by_owner(self, owner_id: str) -> list[CredentialRecord]:
        with self._lock:
            owned = [c for c in self._by_uuid.values() if c.owner_id == owner_id]
            return copy.deepcopy(sorted(owned, key=lambda c: c.issuance_date))

    def mark_verified(self, uuid: str) -> bool:
        with self._lock:
            found = self._by_uuid.get(uuid)
            if found is None or found.status is not CredentialStatus.UNVERIFIED:
                return False
            found.status = CredentialStatus.VERIFIED
            return True

    def revoke(self, uuid: str) -> bool:
        with self._lock:
            found = self._by_uuid.get(uuid)
            if found is None:
                raise NotFoundError(f"Credential {uuid} not found")
            if found.status is CredentialStatus.REVOKED:
                return False
            found.status = CredentialStatus.REVOKED
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_uuid)
