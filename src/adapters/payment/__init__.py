"""Payment adapters - Payment provider clients."""

from .stripe import StripePaymentProvider

__all__ = ["StripePaymentProvider"]
