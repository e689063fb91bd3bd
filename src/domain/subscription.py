"""
Subscription coordinator - Checkout sessions and payment confirmation.

Plan type is never taken from the client. It is derived from the price the
payment provider reports, through an explicit table supplied by
configuration (PlanCatalog).
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from .exceptions import ConflictError, NotFoundError, OnboardingError, ValidationError
from .models import (
    CheckoutResult,
    DeveloperRecord,
    LifecycleState,
    PaymentConfirmation,
    PlanType,
    SubscriptionRecord,
)
from .ports import DeveloperRepository, PaymentProvider

logger = logging.getLogger(__name__)

PAID_STATUS = "paid"

_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class PlanCatalog:
    """
    Offered plans and the price-to-plan-type table.

    Attributes:
        prices: Plan key ("basic", "premium") to provider price id
        amount_tiers: Price amount in minor units to plan type
    """

    prices: Mapping[str, str]
    amount_tiers: Mapping[int, PlanType] = field(default_factory=dict)

    def price_id_for(self, plan_key: str) -> str:
        """
        Raises:
            ValidationError: If plan_key is not an offered plan
        """
        price_id = self.prices.get(plan_key) if plan_key else None
        if not price_id:
            raise ValidationError("Invalid plan selected")
        return price_id

    def plan_type_for(self, price_id: str, amount: int) -> PlanType:
        """
        Derive the plan type of a paid subscription.

        Raises:
            ValidationError: If neither the amount nor the price id is known
        """
        if amount in self.amount_tiers:
            return PlanType(self.amount_tiers[amount])
        for plan_key, known_price_id in self.prices.items():
            if known_price_id == price_id and plan_key in {p.value for p in PlanType}:
                return PlanType(plan_key)
        raise ValidationError(f"No plan type configured for price {price_id} ({amount})")


@dataclass
class SubscriptionCoordinator:
    """Creates checkout sessions and reconciles paid subscriptions."""

    payments: PaymentProvider
    developers: DeveloperRepository
    catalog: PlanCatalog

    def create_checkout_session(self, plan_key: str, customer_id: str) -> CheckoutResult:
        """
        Open a checkout session for customer_id on plan_key.

        Returns:
            CheckoutResult; recorded is False if the session was created
            upstream but could not be attached to the developer record

        Raises:
            ValidationError: If the plan is unknown or the email is unverified
            NotFoundError: If no developer has this customer id
            ConflictError: If the developer already has a paid subscription
            UpstreamError: If the provider fails
        """
        price_id = self.catalog.price_id_for(plan_key)
        developer = self._developer_for(customer_id)
        if not developer.email_verified:
            raise ValidationError("Email address is not verified")
        if developer.subscription is not None and developer.subscription.is_paid:
            raise ConflictError("Developer already has an active subscription")

        session = self.payments.create_checkout_session(price_id, customer_id)
        logger.info("Checkout session %s created for developer %s", session.id, developer.id)

        try:
            attached = self.developers.attach_checkout(
                developer.id, SubscriptionRecord(session_id=session.id)
            )
        except OnboardingError:
            logger.exception(
                "Checkout session %s not recorded for developer %s", session.id, developer.id
            )
            return CheckoutResult(session=session, recorded=False)
        if not attached:
            # Paid concurrently; the new session is left unpaid upstream.
            raise ConflictError("Developer already has an active subscription")
        return CheckoutResult(session=session)

    def confirm_payment(self, session_id: str, customer_id: str) -> PaymentConfirmation | None:
        """
        Record the subscription behind a paid checkout session.

        Returns:
            PaymentConfirmation, or None while the session is not paid yet

        Raises:
            ValidationError: If inputs are missing, the session belongs to
                another customer or the price has no configured plan type
            NotFoundError: If no developer has this customer id
            UpstreamError: If the provider fails
        """
        if not session_id:
            raise ValidationError("Session id is required")
        developer = self._developer_for(customer_id)

        current = developer.subscription
        if current is not None and current.session_id == session_id and current.is_paid:
            return PaymentConfirmation(developer, current, newly_confirmed=False)

        session = self.payments.retrieve_session(session_id)
        if session.customer_id and session.customer_id != customer_id:
            raise ValidationError("Session does not belong to this customer")
        if session.payment_status != PAID_STATUS or not session.subscription_id:
            logger.info(
                "Session %s for developer %s not paid yet (%s)",
                session_id,
                developer.id,
                session.payment_status,
            )
            return None

        subscription = self.payments.retrieve_subscription(session.subscription_id)
        plan_type = self.catalog.plan_type_for(subscription.plan_id, subscription.price_amount)
        duration = subscription.current_period_end - subscription.current_period_start

        record = SubscriptionRecord(
            session_id=session_id,
            subscription_id=subscription.id,
            plan_id=subscription.plan_id,
            plan_type=plan_type,
            start_date=subscription.current_period_start,
            end_date=subscription.current_period_end,
            duration_days=duration.total_seconds() / _SECONDS_PER_DAY,
        )
        if not self.developers.record_subscription(developer.id, record):
            return self._already_recorded(developer.id, session_id)
        developer.subscription = record
        developer.advance_to(LifecycleState.SUBSCRIBED)
        logger.info(
            "Subscription %s (%s) recorded for developer %s",
            subscription.id,
            plan_type.value,
            developer.id,
        )
        return PaymentConfirmation(developer, record, newly_confirmed=True)

    def _already_recorded(self, developer_id: str, session_id: str) -> PaymentConfirmation:
        """Settle a lost race against another confirmation."""
        developer = self.developers.get(developer_id)
        current = developer.subscription if developer is not None else None
        if developer is None or current is None or current.session_id != session_id:
            raise ConflictError("Developer already has an active subscription")
        logger.info("Session %s confirmed concurrently for developer %s", session_id, developer_id)
        return PaymentConfirmation(developer, current, newly_confirmed=False)

    def _developer_for(self, customer_id: str) -> DeveloperRecord:
        if not customer_id:
            raise ValidationError("Customer id is required")
        developer = self.developers.get_by_customer_id(customer_id)
        if developer is None:
            raise NotFoundError("Customer not found")
        return developer
