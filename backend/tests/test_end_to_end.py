"""
End-to-end billing lifecycle against the test database.

A first-time user checks out at the initial tier, trials for three days,
is upgraded to the recurring plan once the trial ends, and a later
sign-up by a returning user goes straight to the recurring plan without
a trial.
"""

from datetime import timedelta

from sqlalchemy import select

from paywall.domain.subscription import ChargeReason, PlanClass, PlanType
from paywall.infrastructure.db.models import Payment, Subscription
from paywall.services.plan_service import PlanService
from paywall.services.trial_service import TrialService
from paywall.services.webhook_reconciler import EventKind, EventReconciler, ReconcileOutcome

from factories import (
    FIXED_NOW,
    RECURRING_PRICE_ID,
    intent_payload,
    invoice_payload,
    subscription_payload,
)


class TestBillingLifecycle:

    async def test_trial_to_recurring(
        self, session, mock_stripe_service, mock_email_service, plans, make_user
    ):
        now = {"value": FIXED_NOW}
        reconciler = EventReconciler(
            session, mock_stripe_service, mock_email_service, clock=lambda: now["value"]
        )
        trials = TrialService(session, mock_stripe_service)

        # New user, no history
        user = await make_user()
        decision = await PlanService(session).decide_plan_for_user(user)
        assert decision.plan_class == PlanClass.INITIAL

        # Checkout completed and subscription created with a three-day trial
        await reconciler.handle_provider_event(
            EventKind.CHECKOUT_COMPLETED,
            {"id": "cs_1", "metadata": {"userId": str(user.id), "isFirstSubscription": "true"}},
        )
        outcome = await reconciler.handle_provider_event(
            EventKind.SUBSCRIPTION_CREATED, subscription_payload("sub_1", user, start=FIXED_NOW)
        )
        assert outcome == ReconcileOutcome.PROCESSED
        assert user.has_ever_subscribed is True

        # First invoice and its payment intent, intent first
        await reconciler.handle_provider_event(
            EventKind.PAYMENT_INTENT_SUCCEEDED,
            intent_payload("pi_1", user.stripe_customer_id, invoice="in_1"),
        )
        await reconciler.handle_provider_event(
            EventKind.INVOICE_PAYMENT_SUCCEEDED,
            invoice_payload("in_1", "sub_1", payment_intent="pi_1"),
        )
        payments = (await session.execute(select(Payment))).scalars().all()
        assert len(payments) == 1
        assert payments[0].card_details["last4"] == "4242"

        trial_end = FIXED_NOW + timedelta(days=3)
        in_trial = await trials.should_charge_user(user.id, trial_end - timedelta(seconds=1))
        assert in_trial.reason == ChargeReason.IN_TRIAL
        assert in_trial.should_charge is False

        # Fast-forward past the trial
        ended = await trials.should_charge_user(user.id, trial_end + timedelta(seconds=1))
        assert ended.should_charge is True
        assert ended.reason == ChargeReason.TRIAL_ENDED

        subscription = (await session.execute(select(Subscription))).scalar_one()
        assert subscription.subscription_type == PlanType.RECURRING.value
        assert subscription.stripe_price_id == RECURRING_PRICE_ID
        assert subscription.trial_end is None

        # The provider echoes the price change; the type stays recurring
        now["value"] = trial_end + timedelta(seconds=2)
        await reconciler.handle_provider_event(
            EventKind.SUBSCRIPTION_UPDATED,
            subscription_payload("sub_1", user, price_id=RECURRING_PRICE_ID, status="active"),
        )
        assert subscription.subscription_type == PlanType.RECURRING.value

        after = await trials.should_charge_user(user.id, trial_end + timedelta(days=1))
        assert after.reason == ChargeReason.ALREADY_RECURRING
        assert mock_stripe_service.swap_subscription_price.await_count == 1

    async def test_returning_user_skips_trial(
        self, session, mock_stripe_service, mock_email_service, plans, make_user
    ):
        reconciler = EventReconciler(
            session, mock_stripe_service, mock_email_service, clock=lambda: FIXED_NOW
        )
        user = await make_user(has_ever_subscribed=True)

        decision = await PlanService(session).decide_plan_for_user(user)
        assert decision.plan_class == PlanClass.RECURRING

        await reconciler.handle_provider_event(
            EventKind.SUBSCRIPTION_CREATED,
            subscription_payload(
                "sub_2",
                user,
                price_id=RECURRING_PRICE_ID,
                status="active",
                trial_days=0,
                first=False,
                plan_type="recurring",
            ),
        )

        subscription = (await session.execute(select(Subscription))).scalar_one()
        assert subscription.subscription_type == PlanType.RECURRING.value
        assert subscription.is_first_subscription is False
        assert subscription.trial_start is None
        assert subscription.trial_end is None
