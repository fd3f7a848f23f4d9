"""
Trial API Routes

Trial status, explicit upgrade, the paywall access check and the trial
view of the active subscription.
"""

import logging

from fastapi import APIRouter

from paywall.api.dependencies import CurrentUserDep, RequirePaidAccessDep, StripeServiceDep
from paywall.domain.clock import utcnow
from paywall.domain.subscription import (
    AccessResponse,
    SubscriptionRead,
    TrialStatusResponse,
    TrialSubscriptionResponse,
    UpgradeResult,
)
from paywall.infrastructure.db.dependencies import SessionDep, SubscriptionRepoDep
from paywall.infrastructure.exceptions import NoUpgradeNeededError, NotFoundError, ProviderError
from paywall.services.trial_service import TrialService


logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/trial/status", response_model=TrialStatusResponse)
async def get_trial_status(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
):
    """
    Whether the user should be charged now.

    Upgrades the subscription to the recurring plan when the trial has
    just ended.
    """
    decision = await TrialService(session, stripe_service).should_charge_user(user.id)
    return TrialStatusResponse(**decision.model_dump())


@router.post("/trial/upgrade", response_model=UpgradeResult)
async def upgrade_after_trial(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
):
    """Upgrade now if the trial is over; 400 when no upgrade is due."""
    service = TrialService(session, stripe_service)
    evaluation = await service.evaluate(user.id)
    if not evaluation.should_upgrade:
        raise NoUpgradeNeededError(evaluation.action.value)

    result = await service.apply_upgrade_if_due(user.id, evaluation=evaluation)
    if result is None or not result.success:
        raise ProviderError(
            "Upgrade failed, it will be retried on the next check",
            details={"error": result.error if result else None},
        )
    return result


@router.get("/trial/subscription", response_model=TrialSubscriptionResponse)
async def get_trial_subscription(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
    repo: SubscriptionRepoDep,
):
    """Active subscription with its trial flags."""
    subscription = await repo.get_active_for_user(user.id)
    if subscription is None:
        raise NotFoundError("No active subscription found", operation="trial_subscription", table="subscriptions")

    evaluation = await TrialService(session, stripe_service).evaluate(user.id, utcnow())
    return TrialSubscriptionResponse(
        subscription=SubscriptionRead.model_validate(subscription),
        is_in_trial=evaluation.in_trial and evaluation.subscription_id == subscription.id,
        should_upgrade=evaluation.should_upgrade and evaluation.subscription_id == subscription.id,
    )


@router.get("/trial/access", response_model=AccessResponse)
async def check_access(trial_info: RequirePaidAccessDep):
    """Paywall check for clients: 402 when the trial has ended and payment is due."""
    return AccessResponse(trial_info=trial_info)
