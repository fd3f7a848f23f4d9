"""
User Database Model

Identity is owned by the auth service; this table carries the fields the
billing core reads and the one flag it writes.
"""

from typing import Optional

from sqlmodel import Field

from paywall.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, table=True):
    """Registered user."""

    __tablename__ = "users"

    email: str = Field(max_length=255, unique=True, index=True)
    name: Optional[str] = Field(default=None, max_length=255)
    stripe_customer_id: Optional[str] = Field(default=None, max_length=255, index=True)

    # Set once, true forever
    has_ever_subscribed: bool = Field(default=False, nullable=False)
