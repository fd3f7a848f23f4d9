"""
Subscription Database Model

One billing relationship between a user and the provider. Never deleted:
cancellation is a status transition.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import Column, JSON
from sqlmodel import Field

from paywall.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class Subscription(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription table.

    ``subscription_type`` only ever moves initial -> recurring. Trial
    bounds are set only on an initial subscription before its upgrade.
    """

    __tablename__ = "subscriptions"

    user_id: UUID = Field(foreign_key="users.id", index=True, nullable=False)

    # Stripe IDs
    stripe_subscription_id: str = Field(max_length=255, unique=True, index=True)
    stripe_customer_id: str = Field(max_length=255, index=True)
    stripe_price_id: str = Field(max_length=255)

    # Lifecycle
    status: str = Field(max_length=20, index=True)
    subscription_type: str = Field(max_length=20, index=True)
    is_first_subscription: bool = Field(default=True)

    # Billing period dates
    current_period_start: datetime
    current_period_end: datetime
    trial_start: Optional[datetime] = Field(default=None)
    trial_end: Optional[datetime] = Field(default=None)
    cancel_at_period_end: bool = Field(default=False)
    canceled_at: Optional[datetime] = Field(default=None)

    # Pricing snapshot
    amount: int = Field(description="Amount in minor units")
    currency: str = Field(default="eur", max_length=3)
    interval: Optional[str] = Field(default=None, max_length=10)
    interval_count: int = Field(default=1)

    provider_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )

    @property
    def is_active(self) -> bool:
        return self.status in ("active", "trialing")
