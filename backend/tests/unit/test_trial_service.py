"""
Unit tests for TrialService.

Covers the split between the side-effect-free evaluation and the upgrade
command, and the should-charge sequence across repeated calls.
"""

from datetime import timedelta
from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

from paywall.domain.subscription import ChargeReason, PlanType, TrialAction
from paywall.infrastructure.payments.stripe_service import StripeServiceError
from paywall.services.trial_service import TrialService

from factories import FIXED_NOW


DURING_TRIAL = FIXED_NOW + timedelta(days=1)
AFTER_TRIAL = FIXED_NOW + timedelta(days=3, seconds=1)


class TestEvaluate:

    async def test_evaluate_has_no_side_effects(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        subscription = await make_subscription(user)

        evaluation = await TrialService(session, mock_stripe_service).evaluate(user.id, AFTER_TRIAL)

        assert evaluation.should_upgrade is True
        assert evaluation.action == TrialAction.UPGRADE_DUE
        assert subscription.subscription_type == PlanType.INITIAL.value
        mock_stripe_service.swap_subscription_price.assert_not_awaited()

    async def test_no_subscription(self, session, mock_stripe_service, make_user):
        user = await make_user()
        evaluation = await TrialService(session, mock_stripe_service).evaluate(user.id, FIXED_NOW)
        assert evaluation.action == TrialAction.NONE

    async def test_recurring_only(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user, subscription_type="recurring", status="active", trial_end=None)

        evaluation = await TrialService(session, mock_stripe_service).evaluate(user.id, FIXED_NOW)

        assert evaluation.action == TrialAction.ALREADY_RECURRING


class TestApplyUpgradeIfDue:

    async def test_not_due_during_trial(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user)

        result = await TrialService(session, mock_stripe_service).apply_upgrade_if_due(user.id, DURING_TRIAL)

        assert result is None
        mock_stripe_service.swap_subscription_price.assert_not_awaited()

    async def test_upgrades_after_trial(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        subscription = await make_subscription(user)

        result = await TrialService(session, mock_stripe_service).apply_upgrade_if_due(user.id, AFTER_TRIAL)

        assert result.success is True
        assert subscription.subscription_type == PlanType.RECURRING.value


class TestShouldChargeUser:

    async def test_in_trial(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user)

        decision = await TrialService(session, mock_stripe_service).should_charge_user(user.id, DURING_TRIAL)

        assert decision.should_charge is False
        assert decision.reason == ChargeReason.IN_TRIAL
        assert decision.trial_end == FIXED_NOW + timedelta(days=3)

    async def test_repeated_calls_upgrade_once(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        subscription = await make_subscription(user)
        service = TrialService(session, mock_stripe_service)

        first = await service.should_charge_user(user.id, AFTER_TRIAL)
        second = await service.should_charge_user(user.id, AFTER_TRIAL)
        third = await service.should_charge_user(user.id, AFTER_TRIAL)

        assert first.should_charge is True
        assert first.reason == ChargeReason.TRIAL_ENDED
        assert first.subscription_info.new_amount == 1000
        assert second.reason == ChargeReason.ALREADY_RECURRING
        assert third.reason == ChargeReason.ALREADY_RECURRING
        assert mock_stripe_service.swap_subscription_price.await_count == 1
        assert subscription.subscription_type == PlanType.RECURRING.value

    async def test_trial_end_evaluates_once(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        await make_subscription(user)
        service = TrialService(session, mock_stripe_service)
        lookup = AsyncMock(wraps=service._subscriptions.get_active_of_type)
        service._subscriptions.get_active_of_type = lookup

        decision = await service.should_charge_user(user.id, AFTER_TRIAL)

        assert decision.reason == ChargeReason.TRIAL_ENDED
        # one lookup per plan type
        assert lookup.await_count == 2

    async def test_upgrade_failure(self, session, mock_stripe_service, plans, make_user, make_subscription):
        user = await make_user()
        subscription = await make_subscription(user)
        mock_stripe_service.swap_subscription_price.side_effect = StripeServiceError("provider down")

        decision = await TrialService(session, mock_stripe_service).should_charge_user(user.id, AFTER_TRIAL)

        assert decision.should_charge is False
        assert decision.reason == ChargeReason.UPGRADE_FAILED
        assert decision.subscription_info.error == "provider down"
        assert subscription.subscription_type == PlanType.INITIAL.value

    async def test_no_subscription(self, session, mock_stripe_service, make_user):
        user = await make_user()
        decision = await TrialService(session, mock_stripe_service).should_charge_user(user.id, FIXED_NOW)
        assert decision.reason == ChargeReason.NONE

    async def test_database_error(self, session, mock_stripe_service, make_user):
        user = await make_user()
        service = TrialService(session, mock_stripe_service)
        service._subscriptions.get_active_of_type = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("db down"))
        )

        decision = await service.should_charge_user(user.id, FIXED_NOW)

        assert decision.should_charge is False
        assert decision.reason == ChargeReason.ERROR
