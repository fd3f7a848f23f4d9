"""
Plan Service

Gathers a user's subscription history and applies the plan policy.
"""

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.domain.plan_policy import SubscriptionHistory, decide_plan, fallback_decision
from paywall.domain.subscription import PlanClass, PlanDecision
from paywall.infrastructure.db.models import SubscriptionPlan
from paywall.infrastructure.db.repositories import PlanRepository, SubscriptionRepository
from paywall.infrastructure.exceptions import PlanNotFoundError


logger = logging.getLogger(__name__)


class PlanService:
    """Plan selection for checkout and the recommended-plan query."""

    def __init__(self, session: AsyncSession):
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)

    async def decide_plan_for_user(self, user: Any) -> PlanDecision:
        """
        Decide {initial, recurring, existing} for a user.

        A failed history lookup falls back to the initial plan instead of
        failing the caller.
        """
        try:
            active = await self._subscriptions.get_active_for_user(user.id)
            has_any = active is not None or await self._subscriptions.has_any_for_user(user.id)
        except SQLAlchemyError as e:
            logger.error(f"Subscription history lookup failed for user {user.id}: {e}")
            return fallback_decision()

        decision = decide_plan(user, SubscriptionHistory(active_subscription=active, has_any_subscription=has_any))
        logger.info(f"Plan for user {user.id}: {decision.plan_class.value} ({decision.reason.value})")
        return decision

    async def plan_for_class(self, plan_class: PlanClass) -> SubscriptionPlan:
        """
        Resolve the active plan row for a checkout plan class.

        Raises:
            PlanNotFoundError: No active plan with a provider price
        """
        plan = await self._plans.get_active_plan(plan_class.value)
        if plan is None or not plan.stripe_price_id:
            raise PlanNotFoundError(plan_class.value)
        return plan

    async def list_plans(self) -> list[SubscriptionPlan]:
        return await self._plans.list_active()
