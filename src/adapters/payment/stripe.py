"""
Stripe payment adapter - Implements PaymentProvider protocol.

Talks to the Stripe REST API directly over requests: form-encoded POST
bodies, bearer-token authentication and a timeout on every call. Any
transport error, non-2xx response or unexpected payload is raised as
UpstreamError so the saga can report the failing step.
"""

import logging
from datetime import datetime, timezone
from typing import Any

import requests

from src.domain.exceptions import UpstreamError
from src.domain.models import CheckoutSession, PaymentSession, ProviderSubscription

logger = logging.getLogger(__name__)

API_BASE = "https://api.stripe.com/v1"


class StripePaymentProvider:
    """
    Implements PaymentProvider protocol via the Stripe REST API.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(
        self,
        secret_key: str,
        client_url: str,
        api_base: str = API_BASE,
        coupon_id: str = "",
        timeout: float = 20.0,
        session: requests.Session | None = None,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._client_url = client_url.rstrip("/")
        self._coupon_id = coupon_id
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"Authorization": f"Bearer {secret_key}"})

    def create_customer(self, name: str, email: str, idempotency_key: str | None = None) -> str:
        """
        Create a customer.

        Stripe answers a repeated request carrying the same Idempotency-Key
        with the customer created the first time.
        """
        customer = self._request(
            "POST",
            "/customers",
            data={"name": name, "email": email},
            idempotency_key=idempotency_key,
        )
        logger.info("Stripe customer %s created", customer.get("id"))
        return _required(customer, "id")

    def create_checkout_session(self, price_id: str, customer_id: str) -> CheckoutSession:
        form = {
            "mode": "subscription",
            "customer": customer_id,
            "payment_method_types[0]": "card",
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": "1",
            "success_url": f"{self._client_url}/payment-success",
            "cancel_url": f"{self._client_url}?cancel=true",
        }
        if self._coupon_id:
            form["discounts[0][coupon]"] = self._coupon_id
        session = self._request("POST", "/checkout/sessions", data=form)
        return CheckoutSession(id=_required(session, "id"), url=session.get("url") or "")

    def retrieve_session(self, session_id: str) -> PaymentSession:
        session = self._request("GET", f"/checkout/sessions/{session_id}")
        return PaymentSession(
            id=_required(session, "id"),
            payment_status=session.get("payment_status") or "",
            subscription_id=_object_id(session.get("subscription")),
            customer_id=_object_id(session.get("customer")),
        )

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        """
        Fetch a subscription and its price.

        Newer API versions report the billing period and price on the first
        subscription item rather than on the subscription itself; both
        shapes are accepted.
        """
        subscription = self._request("GET", f"/subscriptions/{subscription_id}")
        items = (subscription.get("items") or {}).get("data") or [{}]
        item = items[0]
        price = item.get("price") or {}
        plan = subscription.get("plan") or item.get("plan") or {}

        start = subscription.get("current_period_start") or item.get("current_period_start")
        end = subscription.get("current_period_end") or item.get("current_period_end")
        amount = price.get("unit_amount", plan.get("amount"))
        if start is None or end is None or amount is None:
            raise UpstreamError(f"Stripe subscription {subscription_id} is missing period or price")

        return ProviderSubscription(
            id=_required(subscription, "id"),
            status=subscription.get("status") or "",
            plan_id=price.get("id") or plan.get("id") or "",
            price_amount=int(amount),
            current_period_start=datetime.fromtimestamp(int(start), tz=timezone.utc),
            current_period_end=datetime.fromtimestamp(int(end), tz=timezone.utc),
        )

    def _request(
        self,
        method: str,
        path: str,
        data: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        url = f"{self._api_base}{path}"
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        try:
            response = self._session.request(
                method, url, data=data, headers=headers, timeout=self._timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            detail = _error_message(e.response)
            logger.error("Stripe %s %s failed: %s", method, path, detail)
            raise UpstreamError(f"Payment provider rejected {path}: {detail}") from e
        except (requests.RequestException, ValueError) as e:
            logger.error("Stripe %s %s failed: %s", method, path, e)
            raise UpstreamError(f"Payment provider unavailable: {path}") from e


def _required(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not value:
        raise UpstreamError(f"Payment provider response is missing {key}")
    return str(value)


def _object_id(value: Any) -> str | None:
    """Stripe fields are either an id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _error_message(response: requests.Response | None) -> str:
    if response is None:
        return "no response"
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return f"HTTP {response.status_code}"
