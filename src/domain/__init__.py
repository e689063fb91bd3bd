"""
Domain layer - Pure business logic with zero framework imports.

This package contains the onboarding saga and its components. It defines
its own port interfaces for persistence, payments, registries and
notifications, so adapters can be swapped without touching the domain.
"""

from .credentials import AD_HOC_VALIDITY, SUBSCRIPTION_VALIDITY, CredentialIssuer, ValidityPolicy
from .exceptions import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    OnboardingError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from .identity import IdentityIssuer
from .models import DeveloperProfile, DeveloperRecord, ErrorKind, LifecycleState, Outcome, OutcomeStatus
from .registration import RegistrationService
from .saga import OnboardingSaga
from .subscription import PlanCatalog, SubscriptionCoordinator
from .verification import VerificationCodeManager

__all__ = [
    "AD_HOC_VALIDITY",
    "SUBSCRIPTION_VALIDITY",
    "ConflictError",
    "CredentialIssuer",
    "DeveloperProfile",
    "DeveloperRecord",
    "ErrorKind",
    "ExpiredError",
    "IdentityIssuer",
    "LifecycleState",
    "NotFoundError",
    "OnboardingError",
    "OnboardingSaga",
    "Outcome",
    "OutcomeStatus",
    "PersistenceError",
    "PlanCatalog",
    "RegistrationService",
    "SubscriptionCoordinator",
    "UpstreamError",
    "ValidationError",
    "ValidityPolicy",
    "VerificationCodeManager",
]
