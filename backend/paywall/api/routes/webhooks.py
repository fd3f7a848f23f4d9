"""
Stripe Webhook Handler

Receives Stripe notifications and hands them to the event reconciler.
The raw request body is verified before anything parses it.

Only a missing or invalid signature is rejected (400). Every verified
event is acknowledged with 200 so Stripe does not redeliver events that
can never be applied; per-event failures are logged by the reconciler.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.api.dependencies import StripeServiceDep
from paywall.infrastructure.db.dependencies import SessionDep
from paywall.infrastructure.db.repositories import WebhookEventRepository
from paywall.infrastructure.notifications.email_service import EmailService, get_email_service
from paywall.infrastructure.payments.stripe_service import SignatureVerificationError
from paywall.services.webhook_reconciler import EventKind, EventReconciler, ReconcileOutcome


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Idempotency: DB-backed processed event tracking
# =============================================================================

async def is_event_processed(session: AsyncSession, event_id: str) -> bool:
    """Check if a webhook event has already been processed."""
    return await WebhookEventRepository(session).is_processed(event_id)


async def mark_event_processed(session: AsyncSession, event_id: str, event_type: str) -> None:
    """Record a processed webhook event."""
    await WebhookEventRepository(session).mark_processed(event_id, event_type)


# =============================================================================
# Webhook Endpoint
# =============================================================================

@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    session: SessionDep,
    stripe_service: StripeServiceDep,
    email_service: EmailService = Depends(get_email_service),
):
    """
    Handle Stripe webhook events.

    Verifies the signature against the raw body, skips events already
    processed, and reconciles the rest.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    if not signature:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe signature"
        )

    try:
        event = stripe_service.verify_webhook_signature(payload, signature)
    except SignatureVerificationError as e:
        logger.error(f"Webhook signature verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature"
        )

    event_id = event.get("id")
    event_type = event.get("type") or ""

    if event_id and await is_event_processed(session, event_id):
        logger.info(f"Event {event_id} already processed, skipping")
        return {"status": "already_processed"}

    logger.info(f"Processing webhook event: {event_type} ({event_id})")

    kind = EventKind.parse(event_type)
    if kind == EventKind.UNKNOWN:
        logger.debug(f"Unhandled event type: {event_type}")

    reconciler = EventReconciler(session, stripe_service, email_service)
    data_object = (event.get("data") or {}).get("object") or {}
    outcome = await reconciler.handle_provider_event(kind, data_object)

    # Failed events stay unmarked so a manual redelivery can apply them
    if event_id and outcome != ReconcileOutcome.FAILED:
        await mark_event_processed(session, event_id, event_type)

    return {"status": "success", "outcome": outcome.value}
