"""
Trial Clock

Pure evaluation of a user's trial state at a given instant. Performing the
upgrade is a separate command (see TrialService.apply_upgrade_if_due).
"""

from datetime import datetime
from typing import Any, Optional

from paywall.domain.clock import as_naive_utc
from paywall.domain.subscription import PlanType, TrialAction, TrialEvaluation


def evaluate(
    initial_subscription: Optional[Any],
    now: datetime,
    recurring_exists: bool = False,
) -> TrialEvaluation:
    """
    Evaluate trial status.

    Args:
        initial_subscription: The user's active/trialing initial-type
            subscription, or None.
        now: Evaluation instant.
        recurring_exists: Whether the user already has an active/trialing
            recurring subscription.
    """
    if initial_subscription is None:
        if recurring_exists:
            return TrialEvaluation(action=TrialAction.ALREADY_RECURRING)
        return TrialEvaluation(action=TrialAction.NONE)

    trial_end = initial_subscription.trial_end
    if trial_end is None:
        # No trial configured
        return TrialEvaluation(action=TrialAction.NONE, subscription_id=initial_subscription.id)

    if as_naive_utc(now) < as_naive_utc(trial_end):
        return TrialEvaluation(
            in_trial=True,
            action=TrialAction.TRIAL_ACTIVE,
            trial_end=trial_end,
            subscription_id=initial_subscription.id,
        )

    if recurring_exists:
        return TrialEvaluation(
            action=TrialAction.ALREADY_RECURRING,
            trial_end=trial_end,
            subscription_id=initial_subscription.id,
        )

    return TrialEvaluation(
        should_upgrade=True,
        action=TrialAction.UPGRADE_DUE,
        trial_end=trial_end,
        subscription_id=initial_subscription.id,
    )


def is_upgrade_due(subscription: Any, now: datetime) -> bool:
    """
    Whether a single subscription has outlived its trial and is still on
    the initial tier as a first subscription.
    """
    if subscription.subscription_type != PlanType.INITIAL.value:
        return False
    if not subscription.is_first_subscription or subscription.trial_end is None:
        return False
    return as_naive_utc(now) >= as_naive_utc(subscription.trial_end)
