"""
Custom Exceptions for the Paywall Backend

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any


class PaywallError(Exception):
    """Base exception for all paywall errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(PaywallError):
    """Raised when input validation fails."""
    pass


class ActiveSubscriptionError(ValidationError):
    """Raised when a checkout is attempted while a subscription is active or trialing."""

    def __init__(self, message: str = "User already has an active subscription"):
        super().__init__(message, details={"reason": "active_subscription_exists"})


class NoUpgradeNeededError(ValidationError):
    """Raised when an upgrade is requested but none is due."""

    def __init__(self, reason: str):
        super().__init__(
            "No upgrade needed. User is still in trial or already has recurring subscription.",
            details={"reason": reason},
        )


class DatabaseError(PaywallError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class PlanNotFoundError(NotFoundError):
    """Raised when no active plan exists for the requested plan type."""

    def __init__(self, plan_type: str):
        super().__init__(
            f"Subscription plan not found: {plan_type}",
            operation="get_active_plan",
            table="subscription_plans",
        )


class DuplicateError(DatabaseError):
    """Raised when attempting to create a duplicate resource."""
    pass


class ProviderError(PaywallError):
    """Raised when the billing provider rejects or fails a call."""
    pass


class ConfigurationError(PaywallError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


class PaymentRequiredError(PaywallError):
    """Raised when a request needs a paid subscription the user does not have."""

    def __init__(self, trial_info: Optional[Dict[str, Any]] = None):
        super().__init__(
            "Trial period ended. Payment required to continue.",
            details={"requires_payment": True, "trial_info": trial_info},
        )
