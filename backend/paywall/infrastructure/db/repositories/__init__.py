"""
Repository Layer for the Paywall Backend

Exports all repository classes for dependency injection.
"""

from paywall.infrastructure.db.repositories.base_repository import BaseRepository
from paywall.infrastructure.db.repositories.user_repository import UserRepository
from paywall.infrastructure.db.repositories.plan_repository import PlanRepository
from paywall.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from paywall.infrastructure.db.repositories.payment_repository import PaymentRepository
from paywall.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)


__all__ = [
    # Base
    "BaseRepository",
    # Repositories
    "UserRepository",
    "PlanRepository",
    "SubscriptionRepository",
    "PaymentRepository",
    "WebhookEventRepository",
]
