"""
Domain exceptions - Semantic error types for the onboarding saga.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
Adapters translate driver and client errors into these types.
"""


class OnboardingError(Exception):
    """Base class for onboarding domain errors."""

    pass


class ValidationError(OnboardingError):
    """Malformed input, rejected before any collaborator call."""

    pass


class ConflictError(OnboardingError):
    """Uniqueness violation on email, identifier or credential."""

    pass


class NotFoundError(OnboardingError):
    """Referenced developer, identifier or credential is missing."""

    pass


class UpstreamError(OnboardingError):
    """Payment, identity or credential collaborator failed or timed out."""

    pass


class ExpiredError(OnboardingError):
    """Verification code or replay window has lapsed."""

    pass


class PersistenceError(OnboardingError):
    """Entity store rejected a write for a reason other than uniqueness."""

    pass
