"""
Plan Policy

Decides which plan class a user may check out with, from their
subscription history. Pure: callers gather the history.
"""

from dataclasses import dataclass
from typing import Any, Optional

from paywall.domain.subscription import PlanClass, PlanDecision, PlanReason, SubscriptionRead


@dataclass(frozen=True)
class SubscriptionHistory:
    """What the policy needs to know about a user's past subscriptions."""
    active_subscription: Optional[Any] = None
    has_any_subscription: bool = False


def decide_plan(user: Any, history: SubscriptionHistory) -> PlanDecision:
    """
    Decide {initial, recurring, existing} for a user.

    An active or trialing subscription always wins. Otherwise any stored
    subscription OR the durable ``has_ever_subscribed`` flag makes the user
    a returning user; either signal alone is sufficient.
    """
    if history.active_subscription is not None:
        return PlanDecision(
            plan_class=PlanClass.EXISTING,
            reason=PlanReason.HAS_ACTIVE_SUBSCRIPTION,
            existing_subscription=SubscriptionRead.model_validate(history.active_subscription),
        )

    if history.has_any_subscription or bool(getattr(user, "has_ever_subscribed", False)):
        return PlanDecision(plan_class=PlanClass.RECURRING, reason=PlanReason.RETURNING_USER)

    return PlanDecision(plan_class=PlanClass.INITIAL, reason=PlanReason.NEW_USER)


def fallback_decision() -> PlanDecision:
    """Decision used when the history lookup fails: enroll at the initial tier."""
    return PlanDecision(plan_class=PlanClass.INITIAL, reason=PlanReason.ERROR_FALLBACK)
