"""
Subscription Plan Database Model

Reference data: one active row per plan type.
"""

from typing import Any, Optional

from sqlalchemy import Column, JSON
from sqlmodel import Field

from paywall.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SubscriptionPlan(UUIDMixin, TimestampMixin, table=True):
    """Plan offered at checkout (initial tier with trial, or recurring weekly tier)."""

    __tablename__ = "subscription_plans"

    name: str = Field(max_length=100, unique=True)
    description: str = Field(max_length=500)
    stripe_price_id: Optional[str] = Field(default=None, max_length=255, index=True)
    stripe_product_id: Optional[str] = Field(default=None, max_length=255)

    amount: int = Field(description="Amount in minor units")
    currency: str = Field(default="eur", max_length=3)
    interval: Optional[str] = Field(default=None, max_length=10)
    interval_count: int = Field(default=1)

    plan_type: str = Field(max_length=20, index=True)
    trial_period_days: int = Field(default=0)
    is_active: bool = Field(default=True, index=True)

    features: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    plan_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )
