"""
Payment Database Model

One attempted monetary transaction. ``stripe_payment_intent_id`` is the
de-duplication key; a synthetic ``invoice_<id>`` value stands in when the
provider gives no payment intent.
"""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy import Column, JSON
from sqlmodel import Field

from paywall.infrastructure.db.models.base import TimestampMixin, UUIDMixin


SYNTHETIC_ID_PREFIX = "invoice_"


def synthetic_payment_id(invoice_id: str) -> str:
    """Identity used for an invoice whose payment intent cannot be resolved."""
    return f"{SYNTHETIC_ID_PREFIX}{invoice_id}"


class Payment(UUIDMixin, TimestampMixin, table=True):
    """Payment table. Never deleted; refunds are field updates."""

    __tablename__ = "payments"

    user_id: UUID = Field(foreign_key="users.id", index=True, nullable=False)
    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True, nullable=False)

    stripe_payment_intent_id: str = Field(max_length=255, unique=True, index=True)
    stripe_invoice_id: Optional[str] = Field(default=None, max_length=255, index=True)

    amount: int = Field(default=0, description="Amount in minor units")
    currency: str = Field(default="eur", max_length=3)
    status: str = Field(max_length=32, index=True)
    payment_type: str = Field(max_length=32)
    description: str = Field(max_length=255)

    payment_method: Optional[str] = Field(default=None, max_length=255)
    card_details: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    receipt_url: Optional[str] = Field(default=None, max_length=1024)
    failure_reason: Optional[str] = Field(default=None, max_length=1024)

    refunded: bool = Field(default=False)
    refund_amount: int = Field(default=0)

    provider_metadata: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )

    @property
    def has_synthetic_id(self) -> bool:
        return self.stripe_payment_intent_id.startswith(SYNTHETIC_ID_PREFIX)
