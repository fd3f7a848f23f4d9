"""
Webhook Event Reconciler

Applies provider notifications to the subscription store and payment
ledger. Notifications arrive at least once and in any order, so every
handler is idempotent and resolves its own missing references.

Each event runs inside a SAVEPOINT: a failing handler rolls back only its
own writes, is logged, and never raises past ``handle_provider_event``.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from paywall.domain.clock import from_unix, utcnow
from paywall.domain.subscription import BillingInterval, PlanType, SubscriptionStatus
from paywall.domain.trial_clock import is_upgrade_due
from paywall.infrastructure.db.models import Subscription, User
from paywall.infrastructure.db.repositories import (
    PlanRepository,
    SubscriptionRepository,
    UserRepository,
)
from paywall.infrastructure.exceptions import DuplicateError
from paywall.infrastructure.payments.stripe_service import StripeServiceError
from paywall.services.payment_ledger import PaymentLedger
from paywall.services.upgrade_service import UpgradeOrchestrator


logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Provider event types the reconciler knows about."""
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_CREATED = "customer.subscription.created"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    TRIAL_WILL_END = "customer.subscription.trial_will_end"
    INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_METHOD_ATTACHED = "payment_method.attached"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str) -> "EventKind":
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ReconcileOutcome(str, Enum):
    """What happened to one event."""
    PROCESSED = "processed"
    IGNORED = "ignored"
    FAILED = "failed"


INTERVAL_LENGTHS = {
    BillingInterval.DAY.value: timedelta(days=1),
    BillingInterval.WEEK.value: timedelta(days=7),
    BillingInterval.MONTH.value: timedelta(days=30),
    BillingInterval.YEAR.value: timedelta(days=365),
}


def _ref_id(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def price_id_of(subscription: Dict[str, Any]) -> Optional[str]:
    """Price of the first subscription item (legacy ``plan`` as fallback)."""
    price = _first_item(subscription).get("price")
    if price:
        return _ref_id(price)
    return _ref_id(subscription.get("plan"))


def period_bound(subscription: Dict[str, Any], key: str) -> Optional[datetime]:
    """Period bound from the subscription, or from its first item in newer payloads."""
    return from_unix(subscription.get(key)) or from_unix(_first_item(subscription).get(key))


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription_id = _ref_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _ref_id(details.get("subscription"))


def _parse_uuid(value: Any) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class EventReconciler:
    """
    Dispatches provider notifications by kind.

    Args:
        session: Caller-owned session (committed by the caller)
        provider: Billing provider client
        email_service: Confirmation email sender, optional
        clock: Returns the current naive-UTC time
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: Any,
        email_service: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session = session
        self._provider = provider
        self._email_service = email_service
        self._clock = clock
        self._users = UserRepository(session)
        self._plans = PlanRepository(session)
        self._subscriptions = SubscriptionRepository(session)
        self._ledger = PaymentLedger(session, provider)
        self._orchestrator = UpgradeOrchestrator(session, provider)

        self._handlers: Dict[EventKind, Callable[[Dict[str, Any]], Awaitable[ReconcileOutcome]]] = {
            EventKind.CHECKOUT_COMPLETED: self._on_checkout_completed,
            EventKind.SUBSCRIPTION_CREATED: self._on_subscription_created,
            EventKind.SUBSCRIPTION_UPDATED: self._on_subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            EventKind.TRIAL_WILL_END: self._on_trial_will_end,
            EventKind.INVOICE_PAYMENT_SUCCEEDED: self._on_invoice_payment_succeeded,
            EventKind.INVOICE_PAYMENT_FAILED: self._on_invoice_payment_failed,
            EventKind.PAYMENT_INTENT_SUCCEEDED: self._on_payment_intent_succeeded,
            EventKind.PAYMENT_METHOD_ATTACHED: self._on_payment_method_attached,
        }

    async def handle_provider_event(
        self,
        kind: Union[EventKind, str],
        payload: Dict[str, Any],
    ) -> ReconcileOutcome:
        """
        Apply one notification.

        Args:
            kind: Event kind (or raw provider event type)
            payload: The event's ``data.object``

        Returns:
            The outcome; failures are logged and reported, never raised
        """
        if not isinstance(kind, EventKind):
            kind = EventKind.parse(kind)

        handler = self._handlers.get(kind)
        if handler is None:
            logger.info(f"Unhandled event kind {kind.value}, object {payload.get('id')}")
            return ReconcileOutcome.IGNORED

        try:
            async with self._session.begin_nested():
                outcome = await handler(payload)
        except Exception as e:
            logger.error(f"Error handling {kind.value} for {payload.get('id')}: {e}", exc_info=True)
            return ReconcileOutcome.FAILED

        logger.info(f"Handled {kind.value} for {payload.get('id')}: {outcome.value}")
        return outcome

    # =========================================================================
    # Checkout
    # =========================================================================

    async def _on_checkout_completed(self, checkout: Dict[str, Any]) -> ReconcileOutcome:
        metadata = checkout.get("metadata") or {}
        user_id = _parse_uuid(metadata.get("userId"))
        if user_id is None:
            logger.warning(f"Checkout {checkout.get('id')} has no usable userId metadata")
            return ReconcileOutcome.IGNORED

        if metadata.get("isFirstSubscription") == "true":
            if not await self._users.mark_ever_subscribed(user_id):
                return ReconcileOutcome.IGNORED
        return ReconcileOutcome.PROCESSED

    # =========================================================================
    # Subscription lifecycle
    # =========================================================================

    async def _resolve_user(self, subscription: Dict[str, Any]) -> Optional[User]:
        user_id = _parse_uuid((subscription.get("metadata") or {}).get("userId"))
        if user_id is not None:
            user = await self._users.get_by_id(user_id)
            if user is not None:
                return user
        customer_id = _ref_id(subscription.get("customer"))
        if customer_id:
            return await self._users.get_by_customer_id(customer_id)
        return None

    async def _complete_subscription(self, subscription: Dict[str, Any]) -> Dict[str, Any]:
        """Re-fetch a subscription whose payload lacks its period bounds."""
        if period_bound(subscription, "current_period_start") and period_bound(subscription, "current_period_end"):
            return subscription
        try:
            fetched = await self._provider.retrieve_subscription(subscription["id"])
        except StripeServiceError as e:
            logger.warning(f"Could not re-fetch subscription {subscription['id']}, using defaults: {e}")
            return subscription
        return fetched or subscription

    async def _on_subscription_created(self, payload: Dict[str, Any]) -> ReconcileOutcome:
        stripe_id = payload["id"]
        if await self._subscriptions.get_by_stripe_id(stripe_id) is not None:
            logger.info(f"Subscription {stripe_id} already recorded")
            return ReconcileOutcome.PROCESSED

        subscription = await self._complete_subscription(payload)
        metadata = subscription.get("metadata") or {}

        user = await self._resolve_user(subscription)
        if user is None:
            logger.warning(f"No user for subscription {stripe_id}")
            return ReconcileOutcome.IGNORED

        price_id = price_id_of(subscription)
        plan = await self._plans.get_by_price_id(price_id) if price_id else None
        if plan is None:
            logger.warning(f"Unknown price {price_id} on subscription {stripe_id}")
            return ReconcileOutcome.IGNORED

        now = self._clock()
        interval = plan.interval or BillingInterval.WEEK.value
        interval_count = plan.interval_count or 1
        period_start = period_bound(subscription, "current_period_start") or now
        period_end = period_bound(subscription, "current_period_end") or (
            now + INTERVAL_LENGTHS.get(interval, INTERVAL_LENGTHS[BillingInterval.WEEK.value]) * interval_count
        )

        subscription_type = plan.plan_type
        if "isFirstSubscription" in metadata:
            is_first = metadata["isFirstSubscription"] == "true"
        else:
            # Any stored row, whatever its status, marks a returning user
            is_first = (
                subscription_type == PlanType.INITIAL.value
                and not await self._subscriptions.has_any_for_user(user.id)
            )

        trial_start = trial_end = None
        if is_first and subscription_type == PlanType.INITIAL.value:
            trial_start = from_unix(subscription.get("trial_start"))
            trial_end = from_unix(subscription.get("trial_end"))

        record = Subscription(
            user_id=user.id,
            stripe_subscription_id=stripe_id,
            stripe_customer_id=_ref_id(subscription.get("customer")) or user.stripe_customer_id or "",
            stripe_price_id=price_id,
            status=subscription.get("status") or SubscriptionStatus.INCOMPLETE.value,
            subscription_type=subscription_type,
            is_first_subscription=is_first,
            current_period_start=period_start,
            current_period_end=period_end,
            trial_start=trial_start,
            trial_end=trial_end,
            cancel_at_period_end=bool(subscription.get("cancel_at_period_end")),
            canceled_at=from_unix(subscription.get("canceled_at")),
            amount=plan.amount,
            currency=plan.currency,
            interval=interval,
            interval_count=interval_count,
            provider_metadata=dict(metadata),
        )
        try:
            await self._subscriptions.create_unique(record)
        except DuplicateError:
            logger.info(f"Subscription {stripe_id} recorded concurrently")
            return ReconcileOutcome.PROCESSED

        logger.info(
            f"Created {subscription_type} subscription {stripe_id} for user {user.id} "
            f"(status {record.status}, trial_end {record.trial_end})"
        )
        await self._send_confirmation(user, record)
        return ReconcileOutcome.PROCESSED

    async def _send_confirmation(self, user: User, subscription: Subscription) -> None:
        if self._email_service is None:
            return
        try:
            await self._email_service.send_subscription_confirmation(user, subscription)
        except Exception as e:
            logger.warning(f"Confirmation email for subscription {subscription.id} failed: {e}")

    async def _on_subscription_updated(self, payload: Dict[str, Any]) -> ReconcileOutcome:
        stripe_id = payload["id"]
        record = await self._subscriptions.get_by_stripe_id(stripe_id)
        if record is None:
            logger.warning(f"Update for unknown subscription {stripe_id}")
            return ReconcileOutcome.IGNORED

        record.status = payload.get("status") or record.status
        record.current_period_start = period_bound(payload, "current_period_start") or record.current_period_start
        record.current_period_end = period_bound(payload, "current_period_end") or record.current_period_end
        if payload.get("cancel_at_period_end") is not None:
            record.cancel_at_period_end = bool(payload["cancel_at_period_end"])
        record.canceled_at = from_unix(payload.get("canceled_at")) or record.canceled_at

        if record.subscription_type == PlanType.INITIAL.value:
            price_id = price_id_of(payload)
            recurring = await self._plans.get_active_plan(PlanType.RECURRING.value)
            if price_id and recurring is not None and price_id == recurring.stripe_price_id:
                logger.info(f"Subscription {stripe_id} moved to the recurring price, updating type")
                record.subscription_type = PlanType.RECURRING.value
                record.stripe_price_id = price_id
                record.amount = recurring.amount
                record.currency = recurring.currency
                record.interval = recurring.interval
                record.interval_count = recurring.interval_count
                record.is_first_subscription = False
                record.trial_start = None
                record.trial_end = None
            elif record.is_first_subscription:
                record.trial_start = from_unix(payload.get("trial_start")) or record.trial_start
                record.trial_end = from_unix(payload.get("trial_end")) or record.trial_end

        await self._subscriptions.save(record)
        return ReconcileOutcome.PROCESSED

    async def _on_subscription_deleted(self, payload: Dict[str, Any]) -> ReconcileOutcome:
        stripe_id = payload["id"]
        record = await self._subscriptions.get_by_stripe_id(stripe_id)
        if record is None:
            logger.warning(f"Deletion of unknown subscription {stripe_id}")
            user = await self._resolve_user(payload)
            if user is not None:
                await self._users.mark_ever_subscribed(user.id)
            return ReconcileOutcome.IGNORED

        record.status = SubscriptionStatus.CANCELED.value
        if record.canceled_at is None:
            record.canceled_at = (
                from_unix(payload.get("canceled_at"))
                or from_unix(payload.get("ended_at"))
                or self._clock()
            )
        await self._subscriptions.save(record)
        await self._users.mark_ever_subscribed(record.user_id)
        logger.info(f"Subscription {stripe_id} canceled")
        return ReconcileOutcome.PROCESSED

    async def _on_trial_will_end(self, payload: Dict[str, Any]) -> ReconcileOutcome:
        logger.info(
            f"Trial ending soon for subscription {payload.get('id')} "
            f"at {from_unix(payload.get('trial_end'))}"
        )
        return ReconcileOutcome.PROCESSED

    # =========================================================================
    # Payments
    # =========================================================================

    async def _subscription_for_invoice(self, invoice: Dict[str, Any]) -> Optional[Subscription]:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info(f"Invoice {invoice.get('id')} is not for a subscription")
            return None
        record = await self._subscriptions.get_by_stripe_id(subscription_id)
        if record is None:
            logger.warning(f"Invoice {invoice.get('id')} references unknown subscription {subscription_id}")
        return record

    async def _on_invoice_payment_succeeded(self, invoice: Dict[str, Any]) -> ReconcileOutcome:
        record = await self._subscription_for_invoice(invoice)
        if record is None:
            return ReconcileOutcome.IGNORED

        await self._ledger.record_invoice_paid(invoice, record)

        if is_upgrade_due(record, self._clock()):
            result = await self._orchestrator.upgrade(record)
            if not result.success:
                logger.warning(f"Post-payment upgrade of {record.stripe_subscription_id} failed: {result.error}")
        return ReconcileOutcome.PROCESSED

    async def _on_invoice_payment_failed(self, invoice: Dict[str, Any]) -> ReconcileOutcome:
        record = await self._subscription_for_invoice(invoice)
        if record is None:
            return ReconcileOutcome.IGNORED

        await self._ledger.record_invoice_failed(invoice, record)
        return ReconcileOutcome.PROCESSED

    async def _on_payment_intent_succeeded(self, intent: Dict[str, Any]) -> ReconcileOutcome:
        payment = await self._ledger.record_intent_succeeded(intent)
        if payment is None:
            return ReconcileOutcome.IGNORED
        return ReconcileOutcome.PROCESSED

    async def _on_payment_method_attached(self, payload: Dict[str, Any]) -> ReconcileOutcome:
        logger.info(f"Payment method {payload.get('id')} attached to {_ref_id(payload.get('customer'))}")
        return ReconcileOutcome.PROCESSED
