"""
Registration domain service - Developer record creation.

This module validates a developer's registration profile, normalizes
the email address and creates the DeveloperRecord in the Registered
lifecycle state. Issuing the first verification challenge is left to the
onboarding saga.

Email uniqueness is checked up front for a clear error, and enforced
again by the repository's uniqueness constraint so that two concurrent
registrations for one address converge on a single record.
"""

import logging
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from .exceptions import ConflictError, ValidationError
from .models import DeveloperProfile, DeveloperRecord, ExtensionType, LifecycleState, utcnow
from .ports import DeveloperRepository

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_WEB_LINK_PATTERN = re.compile(r"^(https?://)?[\da-z.-]+\.[a-z.]{2,6}[/\w.-]*$", re.IGNORECASE)
_DOMAIN_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9-]{0,62}$")

_REQUIRED_FIELDS = ("first_name", "last_name", "email", "domain_name", "extension_type")


@dataclass
class RegistrationService:
    """
    Domain service for developer registration.

    Orchestrates profile validation, email normalization and record
    persistence.
    """

    repository: DeveloperRepository
    clock: Callable[[], datetime] = field(default=utcnow)

    def register(self, profile: DeveloperProfile) -> DeveloperRecord:
        """
        Register a new developer.

        Args:
            profile: Registration input (email will be normalized)

        Returns:
            The persisted DeveloperRecord in the Registered state

        Raises:
            ValidationError: If a required field is missing or malformed
            ConflictError: If the email is already registered
        """
        self._validate(profile)
        email = self.normalize_email(profile.email)

        if self.repository.get_by_email(email) is not None:
            raise ConflictError("Email already registered")

        now = self.clock()
        developer = DeveloperRecord(
            id=uuid.uuid4().hex,
            email=email,
            first_name=profile.first_name.strip(),
            last_name=profile.last_name.strip(),
            domain_name=profile.domain_name.strip().lower(),
            extension_type=ExtensionType(profile.extension_type),
            extension_name=profile.extension_name.strip().lower(),
            company_name=profile.company_name.strip(),
            description=profile.description.strip(),
            web_link=profile.web_link.strip(),
            linked_in=profile.linked_in.strip(),
            github=profile.github.strip(),
            hugging_face=profile.hugging_face.strip(),
            lifecycle_state=LifecycleState.REGISTERED,
            created_at=now,
            updated_at=now,
        )
        self.repository.create(developer)
        logger.info("Developer %s registered for domain %s", developer.id, developer.identifier_name)
        return developer

    @staticmethod
    def normalize_email(email: str) -> str:
        """
        Normalize email address for consistent storage and lookup.

        Applies: strip whitespace + lowercase
        """
        return email.strip().lower()

    def _validate(self, profile: DeveloperProfile) -> None:
        missing = [name for name in _REQUIRED_FIELDS if not str(getattr(profile, name)).strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        if not _EMAIL_PATTERN.match(profile.email.strip()):
            raise ValidationError("Invalid email format")

        if profile.extension_type not in {e.value for e in ExtensionType}:
            raise ValidationError(f"Unknown extension type: {profile.extension_type}")

        if not _DOMAIN_NAME_PATTERN.match(profile.domain_name.strip().lower()):
            raise ValidationError("Invalid domain name")

        extension_name = profile.extension_name.strip().lower()
        if extension_name and not _DOMAIN_NAME_PATTERN.match(extension_name):
            raise ValidationError("Invalid extension name")

        web_link = profile.web_link.strip()
        if web_link and not _WEB_LINK_PATTERN.match(web_link):
            raise ValidationError(f"{web_link} is not a valid URL")
