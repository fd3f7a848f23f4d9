"""
Payments Infrastructure Module

Stripe billing client and card detail extraction.
"""

from paywall.infrastructure.payments.stripe_service import (
    SignatureVerificationError,
    StripeService,
    StripeServiceError,
    get_stripe_service,
)

__all__ = [
    "SignatureVerificationError",
    "StripeService",
    "StripeServiceError",
    "get_stripe_service",
]
