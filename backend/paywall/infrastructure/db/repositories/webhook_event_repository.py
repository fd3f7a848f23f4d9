"""
Webhook Event Repository

Event-id ledger used to skip provider notifications already handled.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.infrastructure.db.models.processed_webhook_event import ProcessedWebhookEvent
from paywall.infrastructure.db.repositories.base_repository import BaseRepository
from paywall.infrastructure.exceptions import DuplicateError


class WebhookEventRepository(BaseRepository[ProcessedWebhookEvent]):
    """Repository for processed webhook events."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProcessedWebhookEvent, session)

    async def get(self, event_id: str) -> Optional[ProcessedWebhookEvent]:
        stmt = select(ProcessedWebhookEvent).where(ProcessedWebhookEvent.event_id == event_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def is_processed(self, event_id: str) -> bool:
        return await self.get(event_id) is not None

    async def mark_processed(self, event_id: str, event_type: str) -> bool:
        """
        Record an event id.

        Returns:
            False if the event id was already recorded
        """
        try:
            await self.create_unique(
                ProcessedWebhookEvent(event_id=event_id, event_type=event_type)
            )
        except DuplicateError:
            return False
        return True
