"""
Test configuration and fixtures for the Paywall Backend.

Provides shared fixtures for unit and route tests. Persistence runs
against a real in-memory SQLite database so unique constraints and
SAVEPOINTs behave as they do in production.
"""

import pytest
from datetime import timedelta
from typing import AsyncGenerator
from unittest.mock import MagicMock, AsyncMock

from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

from paywall.domain.subscription import PlanType
from paywall.infrastructure.db.database import build_engine, build_session_factory
from paywall.infrastructure.db.models import Subscription, SubscriptionPlan, User

from factories import FIXED_NOW, INITIAL_PRICE_ID, RECURRING_PRICE_ID


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    engine = build_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    """Session bound to the in-memory database."""
    factory = build_session_factory(engine)
    async with factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def plans(session):
    """The two active plans, keyed by plan type."""
    initial = SubscriptionPlan(
        name="Initial Plan",
        description="2.00 EUR with a 3-day trial",
        stripe_price_id=INITIAL_PRICE_ID,
        amount=200,
        currency="eur",
        interval="week",
        plan_type=PlanType.INITIAL.value,
        trial_period_days=3,
    )
    recurring = SubscriptionPlan(
        name="Weekly Plan",
        description="10.00 EUR per week",
        stripe_price_id=RECURRING_PRICE_ID,
        amount=1000,
        currency="eur",
        interval="week",
        plan_type=PlanType.RECURRING.value,
    )
    session.add_all([initial, recurring])
    await session.flush()
    return {"initial": initial, "recurring": recurring}


@pytest.fixture
def make_user(session):
    """Factory for persisted users."""
    counter = {"n": 0}

    async def _make_user(**overrides) -> User:
        counter["n"] += 1
        values = {
            "email": f"user{counter['n']}@example.com",
            "name": f"User {counter['n']}",
            "stripe_customer_id": f"cus_{counter['n']}",
        }
        values.update(overrides)
        user = User(**values)
        session.add(user)
        await session.flush()
        return user

    return _make_user


@pytest.fixture
def make_subscription(session):
    """Factory for persisted subscriptions (initial, trialing by default)."""
    counter = {"n": 0}

    async def _make_subscription(user: User, **overrides) -> Subscription:
        counter["n"] += 1
        values = {
            "user_id": user.id,
            "stripe_subscription_id": f"sub_{counter['n']}",
            "stripe_customer_id": user.stripe_customer_id or "cus_x",
            "stripe_price_id": INITIAL_PRICE_ID,
            "status": "trialing",
            "subscription_type": PlanType.INITIAL.value,
            "is_first_subscription": True,
            "current_period_start": FIXED_NOW,
            "current_period_end": FIXED_NOW + timedelta(days=7),
            "trial_start": FIXED_NOW,
            "trial_end": FIXED_NOW + timedelta(days=3),
            "amount": 200,
            "currency": "eur",
            "interval": "week",
        }
        values.update(overrides)
        subscription = Subscription(**values)
        session.add(subscription)
        await session.flush()
        return subscription

    return _make_subscription


# =============================================================================
# Mock Fixtures
# =============================================================================

@pytest.fixture
def mock_stripe_service():
    """Mock for StripeService. Lookups return empty payloads by default."""
    mock = MagicMock()
    mock.get_or_create_customer = AsyncMock(return_value="cus_new")
    mock.retrieve_checkout_session = AsyncMock(return_value={"id": "cs_test_1", "status": "complete"})
    mock.create_checkout_session = AsyncMock(
        return_value={"id": "cs_test_1", "url": "https://checkout.stripe.com/c/cs_test_1"}
    )
    mock.retrieve_subscription = AsyncMock(return_value={})
    mock.swap_subscription_price = AsyncMock(return_value={})
    mock.set_cancel_at_period_end = AsyncMock(return_value={})
    mock.retrieve_payment_intent = AsyncMock(return_value={})
    mock.retrieve_invoice = AsyncMock(return_value={})
    mock.retrieve_charge = AsyncMock(return_value={})
    mock.retrieve_payment_method = AsyncMock(return_value={})
    return mock


@pytest.fixture
def mock_email_service():
    """Mock for EmailService."""
    mock = MagicMock()
    mock.send_subscription_confirmation = AsyncMock(return_value=True)
    return mock


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app(session, mock_stripe_service, mock_email_service):
    """FastAPI application wired to the test database and mocks."""
    from paywall.main import app
    from paywall.infrastructure.db.database import get_session
    from paywall.infrastructure.notifications.email_service import get_email_service
    from paywall.infrastructure.payments.stripe_service import get_stripe_service

    async def _get_session():
        yield session
        await session.flush()

    app.dependency_overrides[get_session] = _get_session
    app.dependency_overrides[get_stripe_service] = lambda: mock_stripe_service
    app.dependency_overrides[get_email_service] = lambda: mock_email_service
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Get async test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def login(app):
    """Authenticate requests as the given user."""
    from paywall.api.dependencies import get_current_user_id

    def _login(user: User) -> None:
        app.dependency_overrides[get_current_user_id] = lambda: user.id

    return _login
