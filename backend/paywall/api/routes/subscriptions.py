"""
Subscription API Routes

REST API endpoints for plans, checkout and subscription management.
Application errors propagate to the handlers registered in main.py.
"""

import logging
from typing import List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Query
from fastapi.responses import RedirectResponse

from paywall.api.dependencies import CurrentUserDep, StripeServiceDep
from paywall.config.settings import get_settings
from paywall.domain.subscription import (
    CancellationResponse,
    CheckoutResponse,
    CreateCheckoutRequest,
    CurrentSubscriptionResponse,
    PaymentHistoryResponse,
    PlanClass,
    PlanRead,
    RecommendedPlanResponse,
    SubscriptionHistoryResponse,
)
from paywall.infrastructure.db.dependencies import PlanRepoDep, SessionDep
from paywall.infrastructure.exceptions import ValidationError
from paywall.infrastructure.payments.stripe_service import StripeServiceError
from paywall.services.plan_service import PlanService
from paywall.services.subscription_service import DEFAULT_PAGE_SIZE, SubscriptionService


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Plans
# =============================================================================

@router.get("/subscriptions/plans", response_model=List[PlanRead])
async def list_plans(repo: PlanRepoDep):
    """List the active subscription plans."""
    plans = await repo.list_active()
    return [PlanRead.model_validate(plan) for plan in plans]


@router.get("/subscriptions/recommended-plan", response_model=RecommendedPlanResponse)
async def get_recommended_plan(user: CurrentUserDep, session: SessionDep):
    """Plan the current user would get at checkout."""
    service = PlanService(session)
    decision = await service.decide_plan_for_user(user)

    plan = None
    if decision.plan_class != PlanClass.EXISTING:
        row = await service.plan_for_class(decision.plan_class)
        plan = PlanRead.model_validate(row)

    return RecommendedPlanResponse(
        plan_class=decision.plan_class,
        reason=decision.reason,
        plan=plan,
        existing_subscription=decision.existing_subscription,
    )


# =============================================================================
# Checkout
# =============================================================================

@router.post("/subscriptions/checkout", response_model=CheckoutResponse)
async def create_checkout_session(
    request: CreateCheckoutRequest,
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
):
    """
    Create a Stripe Checkout session at the plan chosen for this user.

    Returns 400 when a subscription is already active, 404 when the plan is
    not configured and 502 when Stripe rejects the request.
    """
    service = SubscriptionService(session, stripe_service)
    return await service.create_checkout(
        user,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
    )


@router.get("/subscriptions/success")
async def checkout_success(
    stripe_service: StripeServiceDep,
    session_id: Optional[str] = None,
):
    """
    Landing URL after a completed Checkout. Confirms the session exists and
    redirects to the frontend success page, or to its error page when the
    session cannot be retrieved.
    """
    if not session_id:
        raise ValidationError("Session ID is required")

    frontend_url = get_settings().frontend_url
    try:
        await stripe_service.retrieve_checkout_session(session_id)
    except StripeServiceError as e:
        logger.error(f"Checkout success handling failed for session {session_id}: {e}")
        return RedirectResponse(f"{frontend_url}/error?message=checkout_error", status_code=302)

    query = urlencode({"session_id": session_id, "status": "success"})
    return RedirectResponse(f"{frontend_url}/success?{query}", status_code=302)


# =============================================================================
# Current subscription
# =============================================================================

@router.get("/subscriptions/current", response_model=CurrentSubscriptionResponse)
async def get_current_subscription(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
):
    """Active, trialing or past-due subscription with its latest payment."""
    return await SubscriptionService(session, stripe_service).get_current(user.id)


@router.post("/subscriptions/cancel", response_model=CancellationResponse)
async def cancel_subscription(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
):
    """Cancel at the end of the current billing period."""
    return await SubscriptionService(session, stripe_service).cancel(user.id)


@router.post("/subscriptions/reactivate", response_model=CancellationResponse)
async def reactivate_subscription(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
):
    """Undo a scheduled cancellation."""
    return await SubscriptionService(session, stripe_service).reactivate(user.id)


# =============================================================================
# History
# =============================================================================

@router.get("/subscriptions/history", response_model=SubscriptionHistoryResponse)
async def get_subscription_history(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
):
    return await SubscriptionService(session, stripe_service).subscription_history(user.id, page, limit)


@router.get("/subscriptions/payments", response_model=PaymentHistoryResponse)
async def get_payment_history(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
):
    return await SubscriptionService(session, stripe_service).payment_history(user.id, page, limit)
