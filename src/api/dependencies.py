"""
FastAPI dependencies - Dependency injection factories.

This module wires domain services to infrastructure adapters
(build_saga, called once from the application lifespan) and provides
Depends() factories for injecting them into routes.
"""

import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from psycopg_pool import ConnectionPool

from src.adapters.payment.stripe import StripePaymentProvider
from src.adapters.registry.did_jwk import (
    IssuerKey,
    JwkIdentityRegistry,
    JwtCredentialRegistry,
    generate_issuer_key,
    load_issuer_key,
)
from src.adapters.repository.memory import (
    InMemoryCredentialRepository,
    InMemoryDeveloperRepository,
    InMemoryIdentifierRepository,
)
from src.adapters.repository.postgres import (
    PostgresCredentialRepository,
    PostgresDeveloperRepository,
    PostgresIdentifierRepository,
)
from src.adapters.smtp.console import ConsoleNotificationDispatcher
from src.adapters.smtp.mailer import SmtpNotificationDispatcher
from src.config.settings import Settings
from src.domain.credentials import CredentialIssuer, ValidityPolicy
from src.domain.identity import IdentityIssuer
from src.domain.models import PlanType
from src.domain.ports import NotificationDispatcher
from src.domain.registration import RegistrationService
from src.domain.saga import OnboardingSaga
from src.domain.subscription import PlanCatalog, SubscriptionCoordinator
from src.domain.verification import VerificationCodeManager

logger = logging.getLogger(__name__)


def build_issuer_key(settings: Settings) -> IssuerKey:
    """Load the configured issuer key, or generate an ephemeral one."""
    if settings.issuer_signing_key:
        return load_issuer_key(settings.issuer_signing_key)
    logger.warning(
        "ISSUER_SIGNING_KEY is not set; using an ephemeral key. "
        "Credentials issued by this process cannot be verified after restart."
    )
    return generate_issuer_key()


def build_notifier(settings: Settings) -> NotificationDispatcher:
    if settings.mail_backend == "smtp":
        return SmtpNotificationDispatcher(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.mail_user,
            password=settings.mail_password,
            from_name=settings.mail_from_name,
        )
    return ConsoleNotificationDispatcher()


def build_saga(settings: Settings, pool: ConnectionPool | None = None) -> OnboardingSaga:
    """
    Assemble the onboarding saga from settings.

    Args:
        settings: Application settings
        pool: Connection pool, required when storage_backend is "postgres"
    """
    if settings.storage_backend == "postgres":
        if pool is None:
            raise ValueError("A connection pool is required for the postgres storage backend")
        developers = PostgresDeveloperRepository(pool)
        identifiers = PostgresIdentifierRepository(pool)
        credentials = PostgresCredentialRepository(pool)
    else:
        developers = InMemoryDeveloperRepository()
        identifiers = InMemoryIdentifierRepository()
        credentials = InMemoryCredentialRepository()

    issuer_key = build_issuer_key(settings)
    payments = StripePaymentProvider(
        secret_key=settings.stripe_secret_key,
        client_url=settings.client_url,
        api_base=settings.stripe_api_base,
        coupon_id=settings.stripe_coupon_id,
        timeout=settings.payment_timeout_seconds,
    )
    catalog = PlanCatalog(
        prices=dict(settings.plan_prices),
        amount_tiers={amount: PlanType(plan) for amount, plan in settings.plan_amount_tiers.items()},
    )

    return OnboardingSaga(
        developers=developers,
        registration=RegistrationService(repository=developers),
        codes=VerificationCodeManager(
            repository=developers,
            ttl_seconds=settings.verification_code_ttl_seconds,
            bcrypt_rounds=settings.bcrypt_cost,
        ),
        identities=IdentityIssuer(registry=JwkIdentityRegistry(), repository=identifiers),
        credentials=CredentialIssuer(
            registry=JwtCredentialRegistry(),
            repository=credentials,
            signer_key=issuer_key,
            replay_window_seconds=settings.credential_replay_window_seconds,
        ),
        subscriptions=SubscriptionCoordinator(
            payments=payments, developers=developers, catalog=catalog
        ),
        payments=payments,
        notifier=build_notifier(settings),
        issuer_uri=issuer_key.did,
        subscription_policy=ValidityPolicy("subscription", settings.subscription_validity_months),
        direct_policy=ValidityPolicy("ad-hoc", settings.ad_hoc_validity_months),
        profile_base_url=settings.client_url,
    )


def get_saga(request: Request) -> OnboardingSaga:
    """
    Get the onboarding saga from app state.

    The saga is built during app lifespan startup and stored in app.state.
    """
    return request.app.state.saga


# HTTP BASIC AUTH security scheme for operator endpoints
http_basic = HTTPBasic()


def get_operator(
    request: Request,
    credentials: HTTPBasicCredentials = Depends(http_basic),
) -> str:
    """
    Authenticate an operator via HTTP BASIC AUTH.

    FastAPI's HTTPBasic returns 401 for a missing or malformed header.
    Both fields are compared in constant time; an empty configured
    password rejects everyone.

    Returns:
        The operator username
    """
    settings: Settings = request.app.state.settings
    expected_password = settings.operator_password
    user_ok = secrets.compare_digest(
        credentials.username.encode(), settings.operator_username.encode()
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode(), expected_password.encode()
    )
    if not (expected_password and user_ok and password_ok):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid operator credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username
