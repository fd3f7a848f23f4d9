"""
Dependency Injection Providers for the Paywall Backend

Provides FastAPI dependencies for database sessions and repositories.
"""

from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from paywall.infrastructure.db.database import get_session
from paywall.infrastructure.db.repositories import (
    PlanRepository,
    SubscriptionRepository,
)


# Type alias for session dependency
SessionDep = Annotated[AsyncSession, Depends(get_session)]


async def get_plan_repository(
    session: SessionDep,
) -> AsyncGenerator[PlanRepository, None]:
    """
    Dependency provider for PlanRepository.

    Usage:
        @router.get("/plans")
        async def list_plans(
            repo: PlanRepository = Depends(get_plan_repository)
        ):
            ...
    """
    yield PlanRepository(session)


async def get_subscription_repository(
    session: SessionDep,
) -> AsyncGenerator[SubscriptionRepository, None]:
    """Dependency provider for SubscriptionRepository."""
    yield SubscriptionRepository(session)


# Type aliases for repository dependencies
PlanRepoDep = Annotated[PlanRepository, Depends(get_plan_repository)]
SubscriptionRepoDep = Annotated[
    SubscriptionRepository,
    Depends(get_subscription_repository)
]
