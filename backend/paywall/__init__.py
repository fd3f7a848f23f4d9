"""Paywall backend: subscription billing reconciled with Stripe."""

__version__ = "1.0.0"
