"""
Plan Repository

Lookup of the reference plan rows.
"""

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.infrastructure.db.models.subscription_plan import SubscriptionPlan
from paywall.infrastructure.db.repositories.base_repository import BaseRepository


class PlanRepository(BaseRepository[SubscriptionPlan]):
    """Repository for subscription plans."""

    def __init__(self, session: AsyncSession):
        super().__init__(SubscriptionPlan, session)

    async def get_active_plan(self, plan_type: str) -> Optional[SubscriptionPlan]:
        """
        Get the active plan of a type.

        Args:
            plan_type: "initial" or "recurring"

        Returns:
            The most recently created active plan, or None
        """
        stmt = (
            select(SubscriptionPlan)
            .where(SubscriptionPlan.plan_type == plan_type)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_price_id(self, stripe_price_id: str) -> Optional[SubscriptionPlan]:
        stmt = select(SubscriptionPlan).where(SubscriptionPlan.stripe_price_id == stripe_price_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def get_by_name(self, name: str) -> Optional[SubscriptionPlan]:
        stmt = select(SubscriptionPlan).where(SubscriptionPlan.name == name)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(self) -> List[SubscriptionPlan]:
        stmt = (
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.amount)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
