"""
Trial Service

Trial status queries and the explicit upgrade command. ``evaluate`` never
writes; ``apply_upgrade_if_due`` is the only path that upgrades.
``should_charge_user`` runs both in sequence.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.domain import trial_clock
from paywall.domain.clock import utcnow
from paywall.domain.subscription import (
    ChargeDecision,
    ChargeReason,
    PlanType,
    TrialAction,
    TrialEvaluation,
    UpgradeResult,
)
from paywall.infrastructure.db.repositories import SubscriptionRepository
from paywall.services.upgrade_service import UpgradeOrchestrator


logger = logging.getLogger(__name__)


class TrialService:
    """Trial clock backed by the subscription store."""

    def __init__(self, session: AsyncSession, provider: Any):
        self._subscriptions = SubscriptionRepository(session)
        self._orchestrator = UpgradeOrchestrator(session, provider)

    async def evaluate(self, user_id, now: Optional[datetime] = None) -> TrialEvaluation:
        """Side-effect-free trial status for a user."""
        now = now or utcnow()
        initial = await self._subscriptions.get_active_of_type(user_id, PlanType.INITIAL.value)
        recurring = await self._subscriptions.get_active_of_type(user_id, PlanType.RECURRING.value)
        return trial_clock.evaluate(initial, now, recurring_exists=recurring is not None)

    async def apply_upgrade_if_due(
        self,
        user_id,
        now: Optional[datetime] = None,
        evaluation: Optional[TrialEvaluation] = None,
    ) -> Optional[UpgradeResult]:
        """
        Upgrade the user's initial subscription if its trial has ended.

        Args:
            evaluation: An evaluation the caller already holds; computed when omitted

        Returns:
            The upgrade result, or None when no upgrade is due
        """
        if evaluation is None:
            evaluation = await self.evaluate(user_id, now)
        if not evaluation.should_upgrade:
            return None

        subscription = await self._subscriptions.get_by_id(evaluation.subscription_id)
        result = await self._orchestrator.upgrade(subscription)
        if not result.success:
            logger.warning(f"Trial upgrade for user {user_id} deferred: {result.error}")
        return result

    async def should_charge_user(self, user_id, now: Optional[datetime] = None) -> ChargeDecision:
        """
        Decide whether the user is past their trial and billable at the
        recurring price, upgrading them when the trial has just ended.
        """
        now = now or utcnow()
        try:
            evaluation = await self.evaluate(user_id, now)

            if evaluation.should_upgrade:
                result = await self.apply_upgrade_if_due(user_id, now, evaluation=evaluation)
                if result is not None and result.success:
                    return ChargeDecision(
                        should_charge=True,
                        reason=ChargeReason.TRIAL_ENDED,
                        trial_end=evaluation.trial_end,
                        subscription_info=result,
                    )
                return ChargeDecision(
                    should_charge=False,
                    reason=ChargeReason.UPGRADE_FAILED,
                    trial_end=evaluation.trial_end,
                    subscription_info=result,
                )

            if evaluation.action == TrialAction.TRIAL_ACTIVE:
                return ChargeDecision(
                    should_charge=False,
                    reason=ChargeReason.IN_TRIAL,
                    trial_end=evaluation.trial_end,
                )

            if evaluation.action == TrialAction.ALREADY_RECURRING:
                return ChargeDecision(should_charge=False, reason=ChargeReason.ALREADY_RECURRING)

            return ChargeDecision(should_charge=False, reason=ChargeReason.NONE)

        except SQLAlchemyError as e:
            logger.error(f"Error checking charge status for user {user_id}: {e}")
            return ChargeDecision(should_charge=False, reason=ChargeReason.ERROR)
