"""
API Dependencies

FastAPI dependency injection for authentication, common services and
the paywall gate.

Security: bearer tokens are issued by the auth service and verified here
with the shared HS256 secret. Never decode without verification.
"""

import logging
from typing import Annotated, Any, Optional
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import SQLAlchemyError

from paywall.config.settings import get_settings
from paywall.domain.subscription import ChargeDecision
from paywall.infrastructure.db.dependencies import SessionDep
from paywall.infrastructure.db.models import User
from paywall.infrastructure.db.repositories import UserRepository
from paywall.infrastructure.exceptions import PaymentRequiredError, PaywallError
from paywall.infrastructure.payments.stripe_service import StripeService, get_stripe_service
from paywall.services.trial_service import TrialService


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _decode_token(token: str) -> dict:
    settings = get_settings()
    if not settings.jwt_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication is not configured",
        )

    options: dict[str, Any] = {"require": ["exp", "sub"]}
    kwargs: dict[str, Any] = {}
    if settings.jwt_audience:
        kwargs["audience"] = settings.jwt_audience
    else:
        options["verify_aud"] = False

    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options=options,
        **kwargs,
    )


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> UUID:
    """
    Extract and verify the user ID from a bearer token.

    Returns:
        Authenticated user ID (``sub`` claim).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = _decode_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: malformed user ID",
        )


async def get_current_user(
    session: SessionDep,
    user_id: UUID = Depends(get_current_user_id),
) -> User:
    """Load the authenticated user's record."""
    user = await UserRepository(session).get_by_id(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    return user


CurrentUserDep = Annotated[User, Depends(get_current_user)]
StripeServiceDep = Annotated[StripeService, Depends(get_stripe_service)]


# =============================================================================
# Paywall gate
# =============================================================================

async def get_trial_info(
    user: CurrentUserDep,
    session: SessionDep,
    stripe_service: StripeServiceDep,
) -> Optional[ChargeDecision]:
    """
    Charge decision for the current user, or None when it cannot be computed.

    Runs the trial clock, so a trial that has just ended is upgraded here.
    """
    try:
        return await TrialService(session, stripe_service).should_charge_user(user.id)
    except (SQLAlchemyError, PaywallError) as e:
        logger.error(f"Trial check failed for user {user.id}: {e}")
        return None


async def require_paid_access(
    trial_info: Optional[ChargeDecision] = Depends(get_trial_info),
) -> Optional[ChargeDecision]:
    """
    Block the request with 402 when the user must pay to continue.

    A failed trial check lets the request through.
    """
    if trial_info is not None and trial_info.should_charge:
        raise PaymentRequiredError(trial_info=trial_info.model_dump(mode="json"))
    return trial_info


RequirePaidAccessDep = Annotated[Optional[ChargeDecision], Depends(require_paid_access)]
