"""
Unit tests for the payment ledger.

Invoice and payment-intent notifications arrive in either order and may
be delivered more than once; the ledger must converge on one row per
provider transaction.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from paywall.domain.subscription import PaymentStatus, PaymentType
from paywall.infrastructure.db.models import Payment
from paywall.infrastructure.exceptions import DuplicateError
from paywall.infrastructure.payments.stripe_service import StripeServiceError
from paywall.services.payment_ledger import (
    PaymentFields,
    PaymentLedger,
    apply_fields,
    classify_payment_type,
    merge_status,
)

from factories import intent_payload, invoice_payload


async def _payment_count(session) -> int:
    result = await session.execute(select(func.count()).select_from(Payment))
    return result.scalar_one()


@pytest.fixture
async def user(make_user):
    return await make_user()


@pytest.fixture
async def subscription(plans, user, make_subscription):
    return await make_subscription(user)


@pytest.fixture
def ledger(session, mock_stripe_service):
    return PaymentLedger(session, mock_stripe_service)


class TestMergeRules:
    """Tests for the pure merge helpers."""

    def test_succeeded_never_regresses(self):
        assert merge_status("succeeded", "canceled") == "succeeded"
        assert merge_status("succeeded", "processing") == "succeeded"

    def test_incoming_status_applies(self):
        assert merge_status("processing", "succeeded") == "succeeded"
        assert merge_status("canceled", "succeeded") == "succeeded"

    def test_missing_incoming_keeps_current(self):
        assert merge_status("processing", None) == "processing"

    def test_apply_fields_never_overwrites(self):
        payment = Payment(
            stripe_payment_intent_id="pi_1",
            status="succeeded",
            payment_type="initial_payment",
            description="Payment",
            amount=200,
            receipt_url="https://pay.stripe.com/receipts/original",
        )
        changed = apply_fields(
            payment,
            PaymentFields(amount=999, receipt_url="https://other", payment_method="pm_9"),
        )

        assert changed is True
        assert payment.amount == 200
        assert payment.receipt_url == "https://pay.stripe.com/receipts/original"
        assert payment.payment_method == "pm_9"

    def test_apply_fields_clears_failure_on_success(self):
        payment = Payment(
            stripe_payment_intent_id="pi_1",
            status="canceled",
            payment_type="initial_payment",
            description="Payment",
            failure_reason="Card declined",
        )
        apply_fields(payment, PaymentFields(status="succeeded"))

        assert payment.status == "succeeded"
        assert payment.failure_reason is None

    def test_apply_fields_no_failure_reason_on_succeeded(self):
        payment = Payment(
            stripe_payment_intent_id="pi_1",
            status="succeeded",
            payment_type="initial_payment",
            description="Payment",
        )
        changed = apply_fields(payment, PaymentFields(status="canceled", failure_reason="declined"))

        assert changed is False
        assert payment.failure_reason is None


class TestClassifyPaymentType:

    async def test_first_invoice_on_initial_plan(self, subscription):
        assert classify_payment_type("subscription_create", subscription) == PaymentType.INITIAL_PAYMENT

    async def test_first_invoice_on_recurring_plan(self, subscription):
        subscription.subscription_type = "recurring"
        assert classify_payment_type("subscription_create", subscription) == PaymentType.RECURRING_PAYMENT

    async def test_price_change_invoice(self, subscription):
        assert classify_payment_type("subscription_update", subscription) == PaymentType.UPGRADE_PAYMENT

    async def test_renewal_invoice(self, subscription):
        assert classify_payment_type("subscription_cycle", subscription) == PaymentType.RECURRING_PAYMENT
        assert classify_payment_type(None, subscription) == PaymentType.RECURRING_PAYMENT


class TestResolveIntentId:

    async def test_direct_field(self, ledger):
        assert await ledger.resolve_intent_id({"payment_intent": "pi_1"}) == "pi_1"

    async def test_expanded_field(self, ledger):
        assert await ledger.resolve_intent_id({"payment_intent": {"id": "pi_1"}}) == "pi_1"

    async def test_payments_list(self, ledger):
        invoice = {"payments": {"data": [{"payment": {"payment_intent": "pi_2"}}]}}
        assert await ledger.resolve_intent_id(invoice) == "pi_2"

    async def test_charge_dereference(self, ledger, mock_stripe_service):
        mock_stripe_service.retrieve_charge.return_value = {"id": "ch_1", "payment_intent": "pi_3"}

        assert await ledger.resolve_intent_id({"charge": "ch_1"}) == "pi_3"
        mock_stripe_service.retrieve_charge.assert_awaited_once_with("ch_1")

    async def test_charge_lookup_failure(self, ledger, mock_stripe_service):
        mock_stripe_service.retrieve_charge.side_effect = StripeServiceError("boom")
        assert await ledger.resolve_intent_id({"charge": "ch_1"}) is None

    async def test_nothing_to_resolve(self, ledger, mock_stripe_service):
        assert await ledger.resolve_intent_id({"id": "in_1"}) is None
        mock_stripe_service.retrieve_invoice.assert_awaited_once_with("in_1")

    async def test_retrieved_invoice_payments(self, ledger, mock_stripe_service):
        mock_stripe_service.retrieve_invoice.return_value = {
            "id": "in_1",
            "payments": {"data": [{"payment": {"payment_intent": {"id": "pi_4"}}}]},
        }
        assert await ledger.resolve_intent_id({"id": "in_1"}) == "pi_4"

    async def test_retrieved_invoice_charge(self, ledger, mock_stripe_service):
        mock_stripe_service.retrieve_invoice.return_value = {"id": "in_1", "charge": "ch_5"}
        mock_stripe_service.retrieve_charge.return_value = {"id": "ch_5", "payment_intent": "pi_5"}

        assert await ledger.resolve_intent_id({"id": "in_1"}) == "pi_5"

    async def test_invoice_lookup_failure(self, ledger, mock_stripe_service):
        mock_stripe_service.retrieve_invoice.side_effect = StripeServiceError("boom")
        assert await ledger.resolve_intent_id({"id": "in_1"}) is None

    async def test_payload_reference_skips_lookup(self, ledger, mock_stripe_service):
        assert await ledger.resolve_intent_id({"id": "in_1", "payment_intent": "pi_1"}) == "pi_1"
        mock_stripe_service.retrieve_invoice.assert_not_awaited()


class TestOrderIndependence:
    """Invoice-first and intent-first deliveries end in the same row."""

    async def test_invoice_then_intent(self, session, ledger, mock_stripe_service, user, subscription):
        intent = intent_payload("pi_1", user.stripe_customer_id, invoice="in_1")
        mock_stripe_service.retrieve_payment_intent.return_value = intent

        await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id, payment_intent="pi_1"),
            subscription,
        )
        payment = await ledger.record_intent_succeeded(intent)

        assert await _payment_count(session) == 1
        assert payment.stripe_payment_intent_id == "pi_1"
        assert payment.stripe_invoice_id == "in_1"
        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.amount == 200
        assert payment.payment_type == PaymentType.INITIAL_PAYMENT.value
        assert payment.card_details["last4"] == "4242"
        assert payment.receipt_url == "https://pay.stripe.com/receipts/ch_1"

    async def test_intent_then_invoice(self, session, ledger, user, subscription):
        intent = intent_payload("pi_1", user.stripe_customer_id, invoice="in_1")

        await ledger.record_intent_succeeded(intent)
        payment = await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id, payment_intent="pi_1"),
            subscription,
        )

        assert await _payment_count(session) == 1
        assert payment.stripe_payment_intent_id == "pi_1"
        assert payment.stripe_invoice_id == "in_1"
        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.amount == 200
        assert payment.payment_type == PaymentType.INITIAL_PAYMENT.value
        assert payment.card_details["last4"] == "4242"
        assert payment.receipt_url == "https://pay.stripe.com/receipts/ch_1"

    async def test_duplicate_delivery(self, session, ledger, user, subscription):
        invoice = invoice_payload("in_1", subscription.stripe_subscription_id, payment_intent="pi_1")
        intent = intent_payload("pi_1", user.stripe_customer_id, invoice="in_1")

        for _ in range(2):
            await ledger.record_invoice_paid(invoice, subscription)
            await ledger.record_intent_succeeded(intent)

        assert await _payment_count(session) == 1


class TestSyntheticIdentity:

    async def test_invoice_without_intent_uses_synthetic_id(self, ledger, subscription):
        payment = await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id),
            subscription,
        )

        assert payment.stripe_payment_intent_id == "invoice_in_1"
        assert payment.has_synthetic_id

    async def test_intent_promotes_synthetic_id(self, session, ledger, user, subscription):
        await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id),
            subscription,
        )
        payment = await ledger.record_intent_succeeded(
            intent_payload("pi_1", user.stripe_customer_id, invoice="in_1")
        )

        assert await _payment_count(session) == 1
        assert payment.stripe_payment_intent_id == "pi_1"
        assert payment.card_details["brand"] == "visa"

    async def test_intent_recovers_processing_payment_by_customer(self, session, ledger, user, subscription):
        session.add(Payment(
            user_id=user.id,
            subscription_id=subscription.id,
            stripe_payment_intent_id="invoice_in_9",
            status=PaymentStatus.PROCESSING.value,
            payment_type=PaymentType.INITIAL_PAYMENT.value,
            description="Payment for initial subscription",
            amount=200,
        ))
        await session.flush()

        payment = await ledger.record_intent_succeeded(intent_payload("pi_9", user.stripe_customer_id))

        assert await _payment_count(session) == 1
        assert payment.stripe_payment_intent_id == "pi_9"
        assert payment.status == PaymentStatus.SUCCEEDED.value

    async def test_intent_without_subscription_is_dropped(self, session, ledger, plans):
        payment = await ledger.record_intent_succeeded(intent_payload("pi_1", "cus_unknown"))

        assert payment is None
        assert await _payment_count(session) == 0


class TestUnreferencedNotifications:
    """Invoice and intent payloads that do not name each other."""

    async def test_invoice_then_intent(self, session, ledger, user, subscription):
        await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id),
            subscription,
        )
        payment = await ledger.record_intent_succeeded(intent_payload("pi_1", user.stripe_customer_id))

        assert await _payment_count(session) == 1
        assert payment.stripe_payment_intent_id == "pi_1"
        assert payment.stripe_invoice_id == "in_1"
        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.payment_method == "pm_1"

    async def test_intent_then_invoice(self, session, ledger, user, subscription):
        await ledger.record_intent_succeeded(intent_payload("pi_1", user.stripe_customer_id))
        payment = await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id),
            subscription,
        )

        assert await _payment_count(session) == 1
        assert payment.stripe_payment_intent_id == "pi_1"
        assert payment.stripe_invoice_id == "in_1"
        assert payment.card_details["last4"] == "4242"

    async def test_intent_resolved_from_provider_invoice(self, session, ledger, mock_stripe_service, user, subscription):
        intent = intent_payload("pi_1", user.stripe_customer_id)
        mock_stripe_service.retrieve_invoice.return_value = {
            "id": "in_1",
            "payments": {"data": [{"payment": {"payment_intent": "pi_1"}}]},
        }
        mock_stripe_service.retrieve_payment_intent.return_value = intent

        payment = await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id),
            subscription,
        )
        await ledger.record_intent_succeeded(intent)

        assert await _payment_count(session) == 1
        assert payment.stripe_payment_intent_id == "pi_1"

    async def test_next_cycle_gets_its_own_row(self, session, ledger, user, subscription):
        await ledger.record_intent_succeeded(intent_payload("pi_1", user.stripe_customer_id))
        await ledger.record_invoice_paid(invoice_payload("in_1", subscription.stripe_subscription_id), subscription)

        renewal = await ledger.record_invoice_paid(
            invoice_payload("in_2", subscription.stripe_subscription_id, billing_reason="subscription_cycle"),
            subscription,
        )

        assert await _payment_count(session) == 2
        assert renewal.stripe_payment_intent_id == "invoice_in_2"

    async def test_intent_with_other_amount_not_merged(self, session, ledger, user, subscription):
        await ledger.record_invoice_paid(
            invoice_payload("in_1", subscription.stripe_subscription_id),
            subscription,
        )
        await ledger.record_intent_succeeded(intent_payload("pi_2", user.stripe_customer_id, amount=999))

        assert await _payment_count(session) == 2

    async def test_failed_invoice_not_linked_to_intent_row(self, session, ledger, user, subscription):
        await ledger.record_intent_succeeded(intent_payload("pi_1", user.stripe_customer_id))

        failed = await ledger.record_invoice_failed(
            invoice_payload("in_2", subscription.stripe_subscription_id),
            subscription,
        )

        assert await _payment_count(session) == 2
        assert failed.stripe_payment_intent_id == "invoice_in_2"


class TestFailedPayments:

    async def test_failed_then_succeeded(self, ledger, subscription):
        invoice = invoice_payload("in_1", subscription.stripe_subscription_id, payment_intent="pi_1")
        failed = await ledger.record_invoice_failed(
            {**invoice, "last_finalization_error": {"message": "Card declined"}},
            subscription,
        )
        assert failed.status == PaymentStatus.CANCELED.value
        assert failed.failure_reason == "Card declined"

        payment = await ledger.record_invoice_paid(invoice, subscription)

        assert payment.id == failed.id
        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.failure_reason is None

    async def test_succeeded_then_failed(self, ledger, subscription):
        invoice = invoice_payload("in_1", subscription.stripe_subscription_id, payment_intent="pi_1")
        await ledger.record_invoice_paid(invoice, subscription)

        payment = await ledger.record_invoice_failed(invoice, subscription)

        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.failure_reason is None

    async def test_failed_without_intent_uses_synthetic_id(self, ledger, subscription):
        payment = await ledger.record_invoice_failed(
            invoice_payload("in_2", subscription.stripe_subscription_id),
            subscription,
        )

        assert payment.stripe_payment_intent_id == "invoice_in_2"
        assert payment.failure_reason == "Payment failed"


class TestConcurrentInsert:

    async def test_duplicate_insert_merges_into_existing(self, session, ledger, user, subscription):
        existing = Payment(
            user_id=user.id,
            subscription_id=subscription.id,
            stripe_payment_intent_id="pi_1",
            status=PaymentStatus.PROCESSING.value,
            payment_type=PaymentType.INITIAL_PAYMENT.value,
            description="Payment for initial subscription",
            amount=200,
        )
        session.add(existing)
        await session.flush()

        # Simulate a writer that missed the row on its first lookup
        ledger._payments.get_by_intent_id = AsyncMock(side_effect=[None, existing])

        payment = await ledger._upsert(
            "pi_1",
            PaymentFields(amount=200, status=PaymentStatus.SUCCEEDED.value, receipt_url="https://r"),
            subscription,
        )

        assert payment is existing
        assert payment.status == PaymentStatus.SUCCEEDED.value
        assert payment.receipt_url == "https://r"
        assert await _payment_count(session) == 1

    async def test_duplicate_without_existing_row_raises(self, session, ledger, user, subscription):
        session.add(Payment(
            user_id=user.id,
            subscription_id=subscription.id,
            stripe_payment_intent_id="pi_1",
            status=PaymentStatus.PROCESSING.value,
            payment_type=PaymentType.INITIAL_PAYMENT.value,
            description="Payment",
        ))
        await session.flush()
        ledger._payments.get_by_intent_id = AsyncMock(return_value=None)

        with pytest.raises(DuplicateError):
            await ledger._upsert("pi_1", PaymentFields(status="succeeded"), subscription)
