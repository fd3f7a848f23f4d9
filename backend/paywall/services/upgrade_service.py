"""
Upgrade Orchestrator

Moves an initial-tier subscription to the recurring plan: swap the price
at the provider first, then update the local row. A provider failure
leaves the local row untouched.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from paywall.domain.subscription import PlanType, UpgradeResult
from paywall.infrastructure.db.models import Subscription
from paywall.infrastructure.db.repositories import PlanRepository, SubscriptionRepository
from paywall.infrastructure.payments.stripe_service import StripeServiceError


logger = logging.getLogger(__name__)


class UpgradeOrchestrator:
    """Executes the initial -> recurring transition."""

    def __init__(self, session: AsyncSession, provider: Any):
        self._provider = provider
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)

    async def upgrade(self, subscription: Subscription) -> UpgradeResult:
        """
        Upgrade a subscription to the recurring plan.

        Safe to call repeatedly: an already-recurring subscription is a
        no-op success. Failures are returned, not raised.
        """
        if subscription.subscription_type == PlanType.RECURRING.value:
            return UpgradeResult(
                success=True,
                subscription_id=subscription.id,
                new_amount=subscription.amount,
                new_interval=subscription.interval,
                already_recurring=True,
            )

        plan = await self._plans.get_active_plan(PlanType.RECURRING.value)
        if plan is None or not plan.stripe_price_id:
            logger.warning(f"Cannot upgrade subscription {subscription.id}: no recurring plan price")
            return UpgradeResult(
                success=False,
                subscription_id=subscription.id,
                error="Recurring plan not configured",
            )

        try:
            await self._provider.swap_subscription_price(
                subscription.stripe_subscription_id,
                plan.stripe_price_id,
            )
        except StripeServiceError as e:
            logger.warning(f"Upgrade of subscription {subscription.id} failed at provider: {e}")
            return UpgradeResult(success=False, subscription_id=subscription.id, error=e.message)

        subscription.subscription_type = PlanType.RECURRING.value
        subscription.stripe_price_id = plan.stripe_price_id
        subscription.amount = plan.amount
        subscription.currency = plan.currency
        subscription.interval = plan.interval
        subscription.interval_count = plan.interval_count
        subscription.is_first_subscription = False
        subscription.trial_start = None
        subscription.trial_end = None
        await self._subscriptions.save(subscription)

        logger.info(
            f"Upgraded subscription {subscription.stripe_subscription_id} to recurring "
            f"({plan.amount} {plan.currency}/{plan.interval})"
        )
        return UpgradeResult(
            success=True,
            subscription_id=subscription.id,
            new_amount=plan.amount,
            new_interval=plan.interval,
        )
