"""
Identity issuer - Decentralized identifier creation with global uniqueness.

The registry's create() call mints a new keypair every time it runs, so it
is neither idempotent nor cheap. The issuer therefore checks for an
existing identifier by logical name before calling it, and relies on the
repository's uniqueness constraints on name and uri to settle concurrent
creators: the loser observes ConflictError.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from .exceptions import ConflictError, NotFoundError, UpstreamError, ValidationError
from .models import IdentifierRecord, IdentifierStatus, IdentifierType, utcnow
from .ports import IdentifierRepository, IdentityRegistry

logger = logging.getLogger(__name__)

DID_URI_PATTERN = re.compile(r"^did:([\w]+):([\w.-]+)(/[\w.-]+)*(#[\w.-]+)?$")


def is_did_uri(value: str) -> bool:
    return bool(value) and DID_URI_PATTERN.match(value) is not None


@dataclass
class IdentityIssuer:
    """Creates and refreshes identifiers backed by the identity registry."""

    registry: IdentityRegistry
    repository: IdentifierRepository
    clock: Callable[[], datetime] = field(default=utcnow)

    def create_identifier(
        self,
        name: str,
        owner_id: str,
        identifier_type: IdentifierType = IdentifierType.USER,
        description: str = "",
    ) -> IdentifierRecord:
        """
        Create a new identifier called name for owner_id.

        Args:
            name: Logical identifier name, unique across all owners
            owner_id: Developer the identifier belongs to
            identifier_type: Registry entry type
            description: Free text stored with the record

        Returns:
            The persisted IdentifierRecord (status Created)

        Raises:
            ValidationError: If name or owner_id is empty
            ConflictError: If the name (or minted uri) is already taken
            UpstreamError: If the registry fails or returns a malformed uri
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Identifier name is required")
        if not owner_id:
            raise ValidationError("Identifier owner is required")

        if self.repository.get_by_name(name) is not None:
            raise ConflictError(f"Identifier {name} already exists")

        registered = self.registry.create()
        if not is_did_uri(registered.uri):
            raise UpstreamError(f"Registry returned a malformed DID uri: {registered.uri!r}")

        now = self.clock()
        record = IdentifierRecord(
            name=name,
            uri=registered.uri,
            document=registered.document,
            owner_id=owner_id,
            identifier_type=identifier_type,
            description=description,
            status=IdentifierStatus.CREATED,
            key_material=registered.key_material,
            created_at=now,
            updated_at=now,
        )
        self.repository.create(record)
        logger.info("Identifier %s created for owner %s", name, owner_id)
        return record

    def ensure_identifier(
        self,
        name: str,
        owner_id: str,
        identifier_type: IdentifierType = IdentifierType.USER,
        description: str = "",
    ) -> tuple[IdentifierRecord, bool]:
        """
        Return owner_id's identifier called name, creating it if needed.

        Returns:
            (record, created) where created is False when an existing
            record was reused

        Raises:
            ConflictError: If name belongs to a different owner
        """
        existing = self.repository.get_by_name(name.strip())
        if existing is not None:
            return self._reuse(existing, owner_id), False
        try:
            return self.create_identifier(name, owner_id, identifier_type, description), True
        except ConflictError:
            winner = self.repository.get_by_name(name.strip())
            if winner is None:
                raise
            logger.warning("Lost identifier creation race for %s; reusing winner", name)
            return self._reuse(winner, owner_id), False

    def resolve_and_update(self, uri: str) -> IdentifierRecord:
        """
        Re-resolve uri from the registry and overwrite the stored document.

        Raises:
            NotFoundError: If no local record has this uri
            UpstreamError: If resolution fails
        """
        record = self.repository.get_by_uri(uri)
        if record is None:
            raise NotFoundError(f"Identifier {uri} not found")

        resolved = self.registry.resolve(uri)
        self.repository.update_document(uri, resolved.document)
        record.document = resolved.document
        record.updated_at = self.clock()
        logger.info("Identifier %s document refreshed", record.name)
        return record

    def revoke_identifier(self, uri: str) -> tuple[IdentifierRecord, bool]:
        """
        Move an identifier to Revoked. The record keeps its name, so the
        name can never be reissued to anyone.

        Returns:
            (record, changed) where changed is False if it was already revoked

        Raises:
            ValidationError: If uri is not a DID uri
            NotFoundError: If no local record has this uri
        """
        if not is_did_uri(uri):
            raise ValidationError("Identifier must be a DID uri")
        changed = self.repository.revoke(uri)
        record = self.repository.get_by_uri(uri)
        if record is None:
            raise NotFoundError(f"Identifier {uri} not found")
        if changed:
            logger.info("Identifier %s revoked", record.name)
        return record, changed

    def identifiers_for(self, owner_id: str) -> list[IdentifierRecord]:
        return self.repository.list_by_owner(owner_id)

    def find_by_name(self, name: str) -> IdentifierRecord | None:
        return self.repository.get_by_name(name.strip())

    def _reuse(self, record: IdentifierRecord, owner_id: str) -> IdentifierRecord:
        if record.owner_id != owner_id:
            raise ConflictError(f"Identifier {record.name} belongs to another developer")
        if record.status is IdentifierStatus.REVOKED:
            raise ConflictError(f"Identifier {record.name} is revoked")
        return record
