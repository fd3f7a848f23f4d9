#!/usr/bin/env python3
"""
Seed the two subscription plans.

Creates the Stripe products and prices (unless --skip-stripe) and upserts
one active plan row per plan type. Existing rows keep their Stripe ids.

Usage:
    python scripts/seed_plans.py                  # Create prices in Stripe and seed
    python scripts/seed_plans.py --skip-stripe    # Seed rows only (no provider calls)
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from paywall.config.settings import settings
from paywall.domain.subscription import PlanType
from paywall.infrastructure.db.database import get_session_context, init_db, close_db
from paywall.infrastructure.db.models import SubscriptionPlan
from paywall.infrastructure.db.repositories import PlanRepository
from paywall.infrastructure.payments.stripe_service import get_stripe_service


logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def plan_definitions() -> list[dict]:
    """Plan rows built from the configured pricing."""
    currency = settings.plan_currency
    interval = settings.recurring_plan_interval
    return [
        {
            "name": "Initial Plan",
            "description": (
                f"{settings.initial_plan_amount / 100:.2f} {currency.upper()} with a "
                f"{settings.initial_plan_trial_days}-day trial"
            ),
            "amount": settings.initial_plan_amount,
            "currency": currency,
            "interval": interval,
            "plan_type": PlanType.INITIAL.value,
            "trial_period_days": settings.initial_plan_trial_days,
            "features": ["Full access during the trial"],
        },
        {
            "name": "Weekly Plan",
            "description": f"{settings.recurring_plan_amount / 100:.2f} {currency.upper()} per {interval}",
            "amount": settings.recurring_plan_amount,
            "currency": currency,
            "interval": interval,
            "plan_type": PlanType.RECURRING.value,
            "trial_period_days": 0,
            "features": ["Full access", "Cancel anytime"],
        },
    ]


async def seed_plans(skip_stripe: bool = False) -> int:
    """
    Upsert the plan rows.

    Returns:
        Number of plans written
    """
    stripe_service = None if skip_stripe else get_stripe_service()

    async with get_session_context() as session:
        repo = PlanRepository(session)
        written = 0

        for definition in plan_definitions():
            plan = await repo.get_by_name(definition["name"])
            if plan is None:
                plan = SubscriptionPlan(**definition)
            else:
                for field, value in definition.items():
                    setattr(plan, field, value)

            if stripe_service is not None and not plan.stripe_price_id:
                product_id, price_id = await stripe_service.create_product_with_price(
                    name=plan.name,
                    description=plan.description,
                    amount=plan.amount,
                    currency=plan.currency,
                    interval=plan.interval,
                    interval_count=plan.interval_count,
                )
                plan.stripe_product_id = product_id
                plan.stripe_price_id = price_id

            plan.is_active = True
            await repo.save(plan)
            logger.info(f"Seeded {plan.plan_type} plan '{plan.name}' (price {plan.stripe_price_id})")
            written += 1

    return written


async def main():
    parser = argparse.ArgumentParser(description="Seed subscription plans")
    parser.add_argument(
        "--skip-stripe",
        action="store_true",
        help="Do not create Stripe products/prices"
    )
    args = parser.parse_args()

    await init_db()
    try:
        written = await seed_plans(skip_stripe=args.skip_stripe)
    finally:
        await close_db()

    print(f"\n=== Seeded {written} plans ===")


if __name__ == "__main__":
    asyncio.run(main())
