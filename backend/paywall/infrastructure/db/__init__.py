"""
Database Infrastructure Package for the Paywall Backend

Exports database utilities and dependencies.
"""

from paywall.infrastructure.db.database import (
    DatabaseManager,
    build_engine,
    build_session_factory,
    get_db_manager,
    get_session,
    get_session_context,
    init_db,
    close_db,
)

from paywall.infrastructure.db.dependencies import (
    SessionDep,
    get_plan_repository,
    get_subscription_repository,
    PlanRepoDep,
    SubscriptionRepoDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "build_engine",
    "build_session_factory",
    "get_db_manager",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "SessionDep",
    "get_plan_repository",
    "get_subscription_repository",
    "PlanRepoDep",
    "SubscriptionRepoDep",
]
