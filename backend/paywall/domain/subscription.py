"""
Subscription Domain Models

Domain models for subscription management following Clean Architecture.
Enums, DTOs, and result types for the subscription bounded context.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle status (provider vocabulary)."""
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


# Statuses that count as "the user has a subscription right now"
ACTIVE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)

# Statuses shown as the current subscription
CURRENT_STATUSES = ACTIVE_STATUSES + (SubscriptionStatus.PAST_DUE.value,)


class PlanType(str, Enum):
    """Plan tier. Also used as the subscription type."""
    INITIAL = "initial"
    RECURRING = "recurring"


class BillingInterval(str, Enum):
    """Billing interval for plans and subscriptions."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


class PaymentStatus(str, Enum):
    """Payment status (provider payment-intent vocabulary)."""
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    REQUIRES_CAPTURE = "requires_capture"
    CANCELED = "canceled"
    SUCCEEDED = "succeeded"


class PaymentType(str, Enum):
    """What a payment was for."""
    INITIAL_PAYMENT = "initial_payment"
    RECURRING_PAYMENT = "recurring_payment"
    UPGRADE_PAYMENT = "upgrade_payment"


class PlanClass(str, Enum):
    """Outcome of the plan policy."""
    INITIAL = "initial"
    RECURRING = "recurring"
    EXISTING = "existing"


class PlanReason(str, Enum):
    """Why the plan policy chose a class."""
    HAS_ACTIVE_SUBSCRIPTION = "has_active_subscription"
    RETURNING_USER = "returning_user"
    NEW_USER = "new_user"
    ERROR_FALLBACK = "error_fallback"


class TrialAction(str, Enum):
    """Outcome of a trial evaluation or upgrade attempt."""
    NONE = "none"
    TRIAL_ACTIVE = "trial_active"
    UPGRADE_DUE = "upgrade_due"
    UPGRADED_TO_RECURRING = "upgraded_to_recurring"
    ALREADY_RECURRING = "already_recurring"
    UPGRADE_FAILED = "upgrade_failed"
    ERROR = "error"


class ChargeReason(str, Enum):
    """Reason codes returned by the charge decision."""
    TRIAL_ENDED = "trial_ended"
    IN_TRIAL = "in_trial"
    ALREADY_RECURRING = "already_recurring"
    NONE = "none"
    UPGRADE_FAILED = "upgrade_failed"
    ERROR = "error"


# =============================================================================
# Value Objects
# =============================================================================

class CardDetails(BaseModel):
    """Card metadata attached to a payment."""
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    funding: Optional[str] = None
    country: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(self.model_dump().values())


# =============================================================================
# Read DTOs
# =============================================================================

class PlanRead(BaseModel):
    """Public view of a subscription plan."""
    id: UUID
    name: str
    description: str
    amount: int
    currency: str
    interval: Optional[str] = None
    interval_count: int = 1
    plan_type: PlanType
    trial_period_days: int = 0
    features: list[str] = Field(default_factory=list)

    class Config:
        from_attributes = True


class SubscriptionRead(BaseModel):
    """Public view of a subscription."""
    id: UUID
    stripe_subscription_id: str
    status: SubscriptionStatus
    subscription_type: PlanType
    current_period_start: datetime
    current_period_end: datetime
    trial_start: Optional[datetime] = None
    trial_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[datetime] = None
    is_first_subscription: bool = True
    amount: int
    currency: str
    interval: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PaymentRead(BaseModel):
    """Public view of a payment."""
    id: UUID
    subscription_id: UUID
    stripe_payment_intent_id: str
    stripe_invoice_id: Optional[str] = None
    amount: int
    currency: str
    status: PaymentStatus
    payment_type: PaymentType
    description: str
    card_details: Optional[CardDetails] = None
    receipt_url: Optional[str] = None
    failure_reason: Optional[str] = None
    refunded: bool = False
    refund_amount: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# Decision / Result Types
# =============================================================================

class PlanDecision(BaseModel):
    """Result of decidePlanForUser."""
    plan_class: PlanClass
    reason: PlanReason
    existing_subscription: Optional[SubscriptionRead] = None


class TrialEvaluation(BaseModel):
    """Side-effect-free trial status for a user."""
    in_trial: bool = False
    should_upgrade: bool = False
    action: TrialAction = TrialAction.NONE
    trial_end: Optional[datetime] = None
    subscription_id: Optional[UUID] = None


class UpgradeResult(BaseModel):
    """Outcome of an initial -> recurring upgrade."""
    success: bool
    subscription_id: Optional[UUID] = None
    new_amount: Optional[int] = None
    new_interval: Optional[str] = None
    already_recurring: bool = False
    error: Optional[str] = None


class ChargeDecision(BaseModel):
    """Result of shouldChargeUser."""
    should_charge: bool
    reason: ChargeReason
    trial_end: Optional[datetime] = None
    subscription_info: Optional[UpgradeResult] = None


# =============================================================================
# Request/Response DTOs
# =============================================================================

class CreateCheckoutRequest(BaseModel):
    """Request DTO for creating a checkout session."""
    success_url: Optional[str] = Field(
        default=None, description="Redirect URL after successful payment"
    )
    cancel_url: Optional[str] = Field(
        default=None, description="Redirect URL after cancelled payment"
    )


class CheckoutPlanSummary(BaseModel):
    """Plan summary returned with a checkout session."""
    name: str
    amount: int
    currency: str
    interval: Optional[str] = None
    trial_period_days: int = 0
    plan_type: PlanType


class CheckoutResponse(BaseModel):
    """Response DTO for checkout session creation."""
    checkout_url: str
    session_id: str
    plan: CheckoutPlanSummary


class CurrentSubscriptionResponse(BaseModel):
    """Response DTO for the current subscription query."""
    subscription: Optional[SubscriptionRead] = None
    latest_payment: Optional[PaymentRead] = None
    is_active: bool = False
    is_in_trial: bool = False


class CancellationResponse(BaseModel):
    """Response DTO for cancel/reactivate."""
    cancel_at_period_end: bool
    current_period_end: datetime
    message: str


class SubscriptionHistoryResponse(BaseModel):
    """Paginated subscription history."""
    count: int
    total: int
    page: int
    pages: int
    data: list[SubscriptionRead]


class PaymentHistoryResponse(BaseModel):
    """Paginated payment history."""
    count: int
    total: int
    page: int
    pages: int
    data: list[PaymentRead]


class TrialSubscriptionResponse(BaseModel):
    """Active subscription details with trial flags."""
    subscription: SubscriptionRead
    is_in_trial: bool
    should_upgrade: bool


class RecommendedPlanResponse(BaseModel):
    """Plan the user would be offered at checkout."""
    plan_class: PlanClass
    reason: PlanReason
    plan: Optional[PlanRead] = None
    existing_subscription: Optional[SubscriptionRead] = None


class TrialStatusResponse(BaseModel):
    """Charge decision exposed by the trial status endpoint."""
    should_charge: bool
    reason: ChargeReason
    trial_end: Optional[datetime] = None
    subscription_info: Optional[UpgradeResult] = None


class AccessResponse(BaseModel):
    """Paywall check passed; carries the trial decision when one was computed."""
    access: bool = True
    trial_info: Optional[ChargeDecision] = None
