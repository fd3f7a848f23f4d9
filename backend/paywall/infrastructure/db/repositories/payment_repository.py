"""
Payment Repository

Data access layer for the payment ledger.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.domain.subscription import PaymentStatus
from paywall.infrastructure.db.models.payment import Payment
from paywall.infrastructure.db.models.subscription import Subscription
from paywall.infrastructure.db.repositories.base_repository import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    """
    Repository for payments.

    Rows are created with ``create_unique`` so that concurrent writers for
    the same payment intent resolve to a single row.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Payment, session)

    async def get_by_intent_id(self, stripe_payment_intent_id: str) -> Optional[Payment]:
        stmt = select(Payment).where(Payment.stripe_payment_intent_id == stripe_payment_intent_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_invoice_id(self, stripe_invoice_id: str) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.stripe_invoice_id == stripe_invoice_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def latest_processing_for_customer(self, stripe_customer_id: str) -> Optional[Payment]:
        """
        Most recent still-processing payment whose subscription belongs to
        the given provider customer.
        """
        stmt = (
            select(Payment)
            .join(Subscription, Subscription.id == Payment.subscription_id)
            .where(Subscription.stripe_customer_id == stripe_customer_id)
            .where(Payment.status == PaymentStatus.PROCESSING.value)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def latest_for_subscription(self, subscription_id: UUID) -> Optional[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.subscription_id == subscription_id)
            .order_by(Payment.created_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: UUID,
        limit: int = 10,
        offset: int = 0,
    ) -> List[Payment]:
        """Payment history, newest first."""
        stmt = (
            select(Payment)
            .where(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_user(self, user_id: UUID) -> int:
        stmt = select(func.count()).select_from(Payment).where(Payment.user_id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()
