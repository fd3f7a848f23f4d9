"""
Payment Ledger

Builds one Payment row per provider transaction from independently
ordered notifications. The invoice side knows amount, status and billing
reason; the payment-intent side knows card, method and receipt. Whichever
arrives first creates the row, the other backfills what is missing.

Merge rules:
- populated fields are never overwritten, never nulled
- a ``succeeded`` status never regresses
- ``stripe_payment_intent_id`` is the identity; a synthetic
  ``invoice_<id>`` identity is promoted to the real intent id once known
- when neither payload names the other, the subscription's latest row
  still missing its counterpart is adopted
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from paywall.domain.subscription import PaymentStatus, PaymentType, PlanType
from paywall.infrastructure.db.models import Payment, Subscription, synthetic_payment_id
from paywall.infrastructure.db.repositories import PaymentRepository, SubscriptionRepository
from paywall.infrastructure.exceptions import DuplicateError
from paywall.infrastructure.payments.card_details import (
    extract_card_details,
    receipt_url_from_intent,
)
from paywall.infrastructure.payments.stripe_service import StripeServiceError


logger = logging.getLogger(__name__)


@dataclass
class PaymentFields:
    """Partial view of a payment as seen by one notification."""
    amount: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    payment_type: Optional[str] = None
    description: Optional[str] = None
    stripe_invoice_id: Optional[str] = None
    payment_method: Optional[str] = None
    card_details: Optional[Dict[str, Any]] = None
    receipt_url: Optional[str] = None
    failure_reason: Optional[str] = None


def _ref_id(value: Any) -> Optional[str]:
    """A provider reference may be an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _intent_in_invoice(invoice: Dict[str, Any]) -> Optional[str]:
    intent_id = _ref_id(invoice.get("payment_intent"))
    if intent_id:
        return intent_id
    for entry in (invoice.get("payments") or {}).get("data") or []:
        intent_id = _ref_id((entry.get("payment") or {}).get("payment_intent"))
        if intent_id:
            return intent_id
    return None


def _amounts_agree(recorded: int, incoming: int) -> bool:
    return not recorded or not incoming or recorded == incoming


def awaits_intent(payment: Payment, invoice_id: Optional[str], amount: int) -> bool:
    """
    Whether an invoice-side row is still waiting for its payment intent.

    Such a row carries the synthetic identity and no payment method, and
    must not belong to a different invoice than the one the intent names.
    """
    if not payment.has_synthetic_id or payment.payment_method:
        return False
    if invoice_id and payment.stripe_invoice_id not in (None, invoice_id):
        return False
    return _amounts_agree(payment.amount, amount)


def awaits_invoice(payment: Payment, amount: int) -> bool:
    """Whether an intent-side row has not been linked to any invoice yet."""
    if payment.has_synthetic_id or payment.stripe_invoice_id:
        return False
    return _amounts_agree(payment.amount, amount)


def classify_payment_type(billing_reason: Optional[str], subscription: Subscription) -> PaymentType:
    """What an invoice payment was for."""
    if billing_reason == "subscription_create":
        if subscription.subscription_type == PlanType.INITIAL.value:
            return PaymentType.INITIAL_PAYMENT
        return PaymentType.RECURRING_PAYMENT
    if billing_reason == "subscription_update":
        return PaymentType.UPGRADE_PAYMENT
    return PaymentType.RECURRING_PAYMENT


def merge_status(current: Optional[str], incoming: Optional[str]) -> Optional[str]:
    """Apply an incoming status unless the payment already succeeded."""
    if current == PaymentStatus.SUCCEEDED.value:
        return current
    return incoming or current


def apply_fields(payment: Payment, fields: PaymentFields) -> bool:
    """
    Backfill a payment from a partial view.

    Returns:
        True if anything changed
    """
    changed = False

    def fill(attr: str, value: Any) -> None:
        nonlocal changed
        if value and not getattr(payment, attr):
            setattr(payment, attr, value)
            changed = True

    fill("stripe_invoice_id", fields.stripe_invoice_id)
    fill("payment_method", fields.payment_method)
    fill("card_details", fields.card_details)
    fill("receipt_url", fields.receipt_url)
    fill("currency", fields.currency)
    fill("description", fields.description)

    if fields.amount and not payment.amount:
        payment.amount = fields.amount
        changed = True

    new_status = merge_status(payment.status, fields.status)
    if new_status != payment.status:
        payment.status = new_status
        changed = True
        if new_status == PaymentStatus.SUCCEEDED.value and payment.failure_reason:
            payment.failure_reason = None

    if payment.status != PaymentStatus.SUCCEEDED.value:
        fill("failure_reason", fields.failure_reason)

    return changed


class PaymentLedger:
    """
    Records invoice and payment-intent notifications as Payment rows.

    Args:
        session: Caller-owned session; the ledger only flushes
        provider: Billing provider client (StripeService interface)
    """

    def __init__(self, session: AsyncSession, provider: Any):
        self._provider = provider
        self._payments = PaymentRepository(session)
        self._subscriptions = SubscriptionRepository(session)

    # =========================================================================
    # Invoice notifications
    # =========================================================================

    async def record_invoice_paid(self, invoice: Dict[str, Any], subscription: Subscription) -> Payment:
        """Record a paid invoice against its subscription."""
        payment_type = classify_payment_type(invoice.get("billing_reason"), subscription)
        intent_id = await self.resolve_intent_id(invoice)

        fields = PaymentFields(
            amount=invoice.get("amount_paid") or invoice.get("total") or 0,
            currency=invoice.get("currency") or subscription.currency,
            status=PaymentStatus.SUCCEEDED.value,
            payment_type=payment_type.value,
            description=f"Payment for {subscription.subscription_type} subscription",
            stripe_invoice_id=invoice.get("id"),
        )
        if intent_id:
            await self._enrich_from_intent(intent_id, fields)
        else:
            logger.warning(
                f"Invoice {invoice.get('id')} has no resolvable payment intent, "
                f"matching by subscription"
            )

        return await self._upsert(intent_id, fields, subscription)

    async def record_invoice_failed(self, invoice: Dict[str, Any], subscription: Subscription) -> Payment:
        """Record a failed invoice payment. Never overrides a succeeded payment."""
        payment_type = classify_payment_type(invoice.get("billing_reason"), subscription)
        intent_id = await self.resolve_intent_id(invoice)
        error = invoice.get("last_finalization_error") or {}

        fields = PaymentFields(
            amount=invoice.get("amount_due") or invoice.get("total") or 0,
            currency=invoice.get("currency") or subscription.currency,
            status=PaymentStatus.CANCELED.value,
            payment_type=payment_type.value,
            description=f"Failed payment for {subscription.subscription_type} subscription",
            stripe_invoice_id=invoice.get("id"),
            failure_reason=error.get("message") or "Payment failed",
        )
        return await self._upsert(intent_id, fields, subscription)

    async def resolve_intent_id(self, invoice: Dict[str, Any]) -> Optional[str]:
        """
        Find the payment intent behind an invoice: directly, through the
        newer ``payments`` list, from the provider's copy of the invoice, or
        by dereferencing the invoice's charge.
        """
        intent_id = _intent_in_invoice(invoice)
        if intent_id:
            return intent_id

        charge_id = _ref_id(invoice.get("charge"))
        invoice_id = invoice.get("id")
        if invoice_id:
            try:
                fetched = await self._provider.retrieve_invoice(invoice_id)
            except StripeServiceError as e:
                logger.warning(f"Could not retrieve invoice {invoice_id}: {e}")
                fetched = {}
            intent_id = _intent_in_invoice(fetched or {})
            if intent_id:
                return intent_id
            charge_id = charge_id or _ref_id((fetched or {}).get("charge"))

        if charge_id:
            try:
                charge = await self._provider.retrieve_charge(charge_id)
            except StripeServiceError as e:
                logger.warning(f"Could not dereference charge {charge_id}: {e}")
                return None
            return _ref_id(charge.get("payment_intent"))

        return None

    # =========================================================================
    # Payment intent notifications
    # =========================================================================

    async def record_intent_succeeded(self, intent: Dict[str, Any]) -> Optional[Payment]:
        """
        Backfill card and method details from a succeeded payment intent.

        Returns:
            The payment, or None when no subscription could be linked
        """
        intent_id = intent["id"]
        fields = await self._fields_from_intent(intent)

        payment = await self._payments.get_by_intent_id(intent_id)
        if payment is None:
            payment = await self._recover_payment(intent, fields.amount)
            if payment is not None:
                logger.info(f"Recovered payment {payment.id} for intent {intent_id}")

        if payment is not None:
            return await self._merge(payment, intent_id, fields)

        subscription = await self._subscription_for_intent(intent)
        if subscription is None:
            logger.warning(f"No subscription found for payment intent {intent_id}, dropping")
            return None

        fields.payment_type = PaymentType.RECURRING_PAYMENT.value
        if subscription.subscription_type == PlanType.INITIAL.value:
            fields.payment_type = PaymentType.INITIAL_PAYMENT.value
        fields.description = f"Payment for {subscription.subscription_type} subscription"
        return await self._upsert(intent_id, fields, subscription)

    async def _recover_payment(self, intent: Dict[str, Any], amount: int) -> Optional[Payment]:
        """
        Find the row an intent belongs to when it is not stored under the
        intent id: by invoice, by a processing payment of the same
        subscription or customer, or by the subscription's latest invoice
        row still waiting for its intent.
        """
        invoice_id = _ref_id(intent.get("invoice"))
        if invoice_id:
            payment = await self._payments.get_by_invoice_id(invoice_id)
            if payment is not None:
                return payment

        subscription_id = (intent.get("metadata") or {}).get("subscription_id")
        if subscription_id:
            subscription = await self._subscriptions.get_by_stripe_id(subscription_id)
            if subscription is not None:
                payment = await self._payments.latest_for_subscription(subscription.id)
                if payment is not None and payment.status == PaymentStatus.PROCESSING.value:
                    return payment

        customer_id = _ref_id(intent.get("customer"))
        if customer_id:
            payment = await self._payments.latest_processing_for_customer(customer_id)
            if payment is not None:
                return payment

        subscription = await self._subscription_for_intent(intent)
        if subscription is not None:
            payment = await self._payments.latest_for_subscription(subscription.id)
            if payment is not None and awaits_intent(payment, invoice_id, amount):
                return payment

        return None

    async def _subscription_for_intent(self, intent: Dict[str, Any]) -> Optional[Subscription]:
        subscription_id = (intent.get("metadata") or {}).get("subscription_id")
        if subscription_id:
            subscription = await self._subscriptions.get_by_stripe_id(subscription_id)
            if subscription is not None:
                return subscription

        customer_id = _ref_id(intent.get("customer"))
        if customer_id:
            return await self._subscriptions.latest_for_customer(customer_id)
        return None

    async def _fields_from_intent(self, intent: Dict[str, Any]) -> PaymentFields:
        extraction = await extract_card_details(intent, self._provider)
        return PaymentFields(
            amount=intent.get("amount_received") or intent.get("amount") or 0,
            currency=intent.get("currency"),
            status=intent.get("status"),
            stripe_invoice_id=_ref_id(intent.get("invoice")),
            payment_method=extraction.payment_method_id,
            card_details=extraction.card_details.model_dump() if extraction.card_details else None,
            receipt_url=receipt_url_from_intent(intent),
        )

    async def _enrich_from_intent(self, intent_id: str, fields: PaymentFields) -> None:
        """Pull card details for an invoice payment when the intent is retrievable."""
        try:
            intent = await self._provider.retrieve_payment_intent(intent_id)
        except StripeServiceError as e:
            logger.warning(f"Card details unavailable for intent {intent_id}: {e}")
            return
        if not intent:
            return
        from_intent = await self._fields_from_intent(intent)
        fields.payment_method = from_intent.payment_method
        fields.card_details = from_intent.card_details
        fields.receipt_url = from_intent.receipt_url

    # =========================================================================
    # Upsert by identity
    # =========================================================================

    async def _upsert(
        self,
        intent_id: Optional[str],
        fields: PaymentFields,
        subscription: Subscription,
    ) -> Payment:
        payment = None
        if intent_id:
            payment = await self._payments.get_by_intent_id(intent_id)
        if payment is None and fields.stripe_invoice_id:
            payment = await self._payments.get_by_invoice_id(fields.stripe_invoice_id)
        if payment is None and intent_id is None and fields.status == PaymentStatus.SUCCEEDED.value:
            # Paid invoice that names no intent: the intent may already be stored
            latest = await self._payments.latest_for_subscription(subscription.id)
            if latest is not None and awaits_invoice(latest, fields.amount):
                logger.info(
                    f"Linking invoice {fields.stripe_invoice_id} to payment {latest.stripe_payment_intent_id}"
                )
                payment = latest

        if payment is not None:
            return await self._merge(payment, intent_id, fields)

        identity = intent_id or synthetic_payment_id(fields.stripe_invoice_id)
        payment = Payment(
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            stripe_payment_intent_id=identity,
            stripe_invoice_id=fields.stripe_invoice_id,
            amount=fields.amount or 0,
            currency=fields.currency or subscription.currency,
            status=fields.status or PaymentStatus.PROCESSING.value,
            payment_type=fields.payment_type or PaymentType.RECURRING_PAYMENT.value,
            description=fields.description or "Subscription payment",
            payment_method=fields.payment_method,
            card_details=fields.card_details,
            receipt_url=fields.receipt_url,
            failure_reason=fields.failure_reason,
        )
        try:
            await self._payments.create_unique(payment)
        except DuplicateError:
            logger.info(f"Payment {identity} created concurrently, merging instead")
            existing = await self._payments.get_by_intent_id(identity)
            if existing is None:
                raise
            return await self._merge(existing, intent_id, fields)

        logger.info(
            f"Recorded payment {identity} ({payment.status}, {payment.amount} {payment.currency}) "
            f"for subscription {subscription.stripe_subscription_id}"
        )
        return payment

    async def _merge(self, payment: Payment, intent_id: Optional[str], fields: PaymentFields) -> Payment:
        changed = apply_fields(payment, fields)

        if intent_id and payment.has_synthetic_id:
            logger.info(f"Promoting payment {payment.stripe_payment_intent_id} to intent {intent_id}")
            payment.stripe_payment_intent_id = intent_id
            changed = True

        if changed:
            await self._payments.save(payment)
            logger.info(f"Updated payment {payment.stripe_payment_intent_id} (status {payment.status})")
        return payment
