"""
Subscription Service

User-facing subscription operations: checkout creation, the current
subscription, cancel/reactivate at period end, and paginated history.
Provider failures on these paths propagate to the caller.
"""

import logging
import math
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from paywall.config.settings import settings
from paywall.domain.clock import utcnow
from paywall.domain.subscription import (
    CancellationResponse,
    CheckoutPlanSummary,
    CheckoutResponse,
    CurrentSubscriptionResponse,
    PaymentHistoryResponse,
    PaymentRead,
    PlanClass,
    SubscriptionHistoryResponse,
    SubscriptionRead,
    SubscriptionStatus,
)
from paywall.infrastructure.db.repositories import (
    PaymentRepository,
    SubscriptionRepository,
    UserRepository,
)
from paywall.infrastructure.exceptions import (
    ActiveSubscriptionError,
    NotFoundError,
    ValidationError,
)
from paywall.services.plan_service import PlanService


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10


def _pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if total else 0


class SubscriptionService:
    """Subscription operations for an authenticated user."""

    def __init__(self, session: AsyncSession, provider: Any):
        self._provider = provider
        self._plan_service = PlanService(session)
        self._users = UserRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._payments = PaymentRepository(session)

    # =========================================================================
    # Checkout
    # =========================================================================

    async def create_checkout(
        self,
        user: Any,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CheckoutResponse:
        """
        Create a hosted checkout session at the plan the policy picks.

        Two concurrent calls for the same user can both pass the active
        subscription check; nothing here serializes them.

        Raises:
            ActiveSubscriptionError: The user already has an active or trialing subscription
            PlanNotFoundError: The chosen plan is not configured
            StripeServiceError: The provider rejected a call
        """
        decision = await self._plan_service.decide_plan_for_user(user)
        if decision.plan_class == PlanClass.EXISTING:
            raise ActiveSubscriptionError()

        plan = await self._plan_service.plan_for_class(decision.plan_class)

        customer_id = await self._provider.get_or_create_customer(
            str(user.id),
            user.email,
            name=user.name,
            existing_customer_id=user.stripe_customer_id,
        )
        if customer_id != user.stripe_customer_id:
            await self._users.set_customer_id(user, customer_id)

        is_first = decision.plan_class == PlanClass.INITIAL
        trial_days = plan.trial_period_days if is_first else 0
        metadata = {
            "userId": str(user.id),
            "planType": plan.plan_type,
            "isFirstSubscription": "true" if is_first else "false",
        }

        session = await self._provider.create_checkout_session(
            customer_id=customer_id,
            price_id=plan.stripe_price_id,
            success_url=success_url or settings.checkout_success_url,
            cancel_url=cancel_url or settings.checkout_cancel_url,
            metadata=metadata,
            trial_period_days=trial_days,
        )
        logger.info(
            f"Checkout {session['id']} for user {user.id}: plan {plan.name} "
            f"({decision.reason.value})"
        )

        return CheckoutResponse(
            checkout_url=session["url"],
            session_id=session["id"],
            plan=CheckoutPlanSummary(
                name=plan.name,
                amount=plan.amount,
                currency=plan.currency,
                interval=plan.interval,
                trial_period_days=trial_days,
                plan_type=plan.plan_type,
            ),
        )

    # =========================================================================
    # Current subscription
    # =========================================================================

    async def get_current(self, user_id) -> CurrentSubscriptionResponse:
        """Active, trialing or past-due subscription with its latest payment."""
        subscription = await self._subscriptions.get_current_for_user(user_id)
        if subscription is None:
            return CurrentSubscriptionResponse()

        latest = await self._payments.latest_for_subscription(subscription.id)
        in_trial = subscription.status == SubscriptionStatus.TRIALING.value or (
            subscription.trial_end is not None and subscription.trial_end > utcnow()
        )
        return CurrentSubscriptionResponse(
            subscription=SubscriptionRead.model_validate(subscription),
            latest_payment=PaymentRead.model_validate(latest) if latest else None,
            is_active=subscription.is_active,
            is_in_trial=in_trial,
        )

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel(self, user_id) -> CancellationResponse:
        """Schedule cancellation at the end of the current period."""
        subscription = await self._subscriptions.get_active_for_user(user_id)
        if subscription is None:
            raise NotFoundError("No active subscription found", operation="cancel", table="subscriptions")

        remote = await self._provider.set_cancel_at_period_end(subscription.stripe_subscription_id, True)
        subscription.cancel_at_period_end = bool(remote.get("cancel_at_period_end", True))
        await self._subscriptions.save(subscription)
        logger.info(f"Subscription {subscription.stripe_subscription_id} set to cancel at period end")

        return CancellationResponse(
            cancel_at_period_end=subscription.cancel_at_period_end,
            current_period_end=subscription.current_period_end,
            message="Subscription will be canceled at the end of the billing period",
        )

    async def reactivate(self, user_id) -> CancellationResponse:
        """Undo a scheduled cancellation."""
        subscription = await self._subscriptions.get_active_for_user(user_id)
        if subscription is None:
            raise NotFoundError("No active subscription found", operation="reactivate", table="subscriptions")
        if not subscription.cancel_at_period_end:
            raise ValidationError("Subscription is not scheduled for cancellation")

        remote = await self._provider.set_cancel_at_period_end(subscription.stripe_subscription_id, False)
        subscription.cancel_at_period_end = bool(remote.get("cancel_at_period_end", False))
        await self._subscriptions.save(subscription)
        logger.info(f"Subscription {subscription.stripe_subscription_id} reactivated")

        return CancellationResponse(
            cancel_at_period_end=subscription.cancel_at_period_end,
            current_period_end=subscription.current_period_end,
            message="Subscription reactivated",
        )

    # =========================================================================
    # History
    # =========================================================================

    async def subscription_history(
        self,
        user_id,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> SubscriptionHistoryResponse:
        offset = (page - 1) * limit
        rows = await self._subscriptions.list_for_user(user_id, limit=limit, offset=offset)
        total = await self._subscriptions.count_for_user(user_id)
        return SubscriptionHistoryResponse(
            count=len(rows),
            total=total,
            page=page,
            pages=_pages(total, limit),
            data=[SubscriptionRead.model_validate(row) for row in rows],
        )

    async def payment_history(
        self,
        user_id,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> PaymentHistoryResponse:
        offset = (page - 1) * limit
        rows = await self._payments.list_for_user(user_id, limit=limit, offset=offset)
        total = await self._payments.count_for_user(user_id)
        return PaymentHistoryResponse(
            count=len(rows),
            total=total,
            page=page,
            pages=_pages(total, limit),
            data=[PaymentRead.model_validate(row) for row in rows],
        )
