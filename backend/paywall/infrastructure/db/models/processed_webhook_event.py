"""
Processed Webhook Event Model

Event-id ledger consulted before dispatching a provider notification.
"""

from datetime import datetime

from sqlmodel import Field, SQLModel

from paywall.domain.clock import utcnow


class ProcessedWebhookEvent(SQLModel, table=True):
    """A provider event that has already been handled."""

    __tablename__ = "processed_webhook_events"

    event_id: str = Field(primary_key=True, max_length=255)
    event_type: str = Field(max_length=100)
    processed_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)
