"""
User Repository

Read access to users plus the single flag the billing core writes.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.infrastructure.db.models.user import User
from paywall.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[User]):
    """Repository for user records."""

    def __init__(self, session: AsyncSession):
        super().__init__(User, session)

    async def get_by_customer_id(self, stripe_customer_id: str) -> Optional[User]:
        stmt = select(User).where(User.stripe_customer_id == stripe_customer_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def set_customer_id(self, user: User, stripe_customer_id: str) -> User:
        user.stripe_customer_id = stripe_customer_id
        return await self.save(user)

    async def mark_ever_subscribed(self, user_id: UUID) -> bool:
        """
        Set ``has_ever_subscribed``. Never clears it.

        Returns:
            True if the user exists
        """
        user = await self.get_by_id(user_id)
        if user is None:
            logger.warning(f"Cannot mark subscription history: user {user_id} not found")
            return False
        if not user.has_ever_subscribed:
            user.has_ever_subscribed = True
            await self.save(user)
            logger.info(f"User {user_id} marked as having subscribed")
        return True
