"""
Subscription Repository

Data access layer for subscription persistence.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.domain.subscription import ACTIVE_STATUSES, CURRENT_STATUSES
from paywall.infrastructure.db.models.subscription import Subscription
from paywall.infrastructure.db.repositories.base_repository import BaseRepository


logger = logging.getLogger(__name__)


class SubscriptionRepository(BaseRepository[Subscription]):
    """
    Repository for subscription data access.

    Subscriptions are never deleted; cancellation is a status change.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Subscription, session)

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_by_stripe_id(self, stripe_subscription_id: str) -> Optional[Subscription]:
        """
        Get subscription by Stripe subscription ID.

        Args:
            stripe_subscription_id: Stripe subscription ID

        Returns:
            Subscription or None
        """
        stmt = select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_for_user(self, user_id: UUID) -> Optional[Subscription]:
        """Most recent active or trialing subscription for a user."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.status.in_(ACTIVE_STATUSES))
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_current_for_user(self, user_id: UUID) -> Optional[Subscription]:
        """Most recent active, trialing or past-due subscription for a user."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.status.in_(CURRENT_STATUSES))
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_of_type(
        self,
        user_id: UUID,
        subscription_type: str,
    ) -> Optional[Subscription]:
        """Most recent active or trialing subscription of the given type."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.subscription_type == subscription_type)
            .where(Subscription.status.in_(ACTIVE_STATUSES))
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def has_any_for_user(self, user_id: UUID) -> bool:
        """Whether any subscription (any status) was ever stored for the user."""
        stmt = select(func.count()).select_from(Subscription).where(Subscription.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one() > 0

    async def latest_for_customer(self, stripe_customer_id: str) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.stripe_customer_id == stripe_customer_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: UUID,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Subscription]:
        """Subscription history, newest first."""
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_user(self, user_id: UUID) -> int:
        stmt = select(func.count()).select_from(Subscription).where(Subscription.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()
