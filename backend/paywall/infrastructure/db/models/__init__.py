"""
SQLModel ORM Models for the Paywall Backend

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from paywall.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from paywall.infrastructure.db.models.user import User
from paywall.infrastructure.db.models.subscription_plan import SubscriptionPlan
from paywall.infrastructure.db.models.subscription import Subscription
from paywall.infrastructure.db.models.payment import (
    Payment,
    SYNTHETIC_ID_PREFIX,
    synthetic_payment_id,
)
from paywall.infrastructure.db.models.processed_webhook_event import ProcessedWebhookEvent


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    # Tables
    "User",
    "SubscriptionPlan",
    "Subscription",
    "Payment",
    "ProcessedWebhookEvent",
    # Helpers
    "SYNTHETIC_ID_PREFIX",
    "synthetic_payment_id",
]
