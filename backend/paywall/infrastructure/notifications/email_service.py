"""
Email Notification Service

Subscription confirmation email through Resend. Sending is best effort:
failures are logged and reported as False, never raised.
"""

import asyncio
import logging
from typing import Any, Optional

import resend

from paywall.config.settings import get_settings


logger = logging.getLogger(__name__)


def _format_amount(amount: int, currency: str) -> str:
    return f"{amount / 100:.2f} {currency.upper()}"


class EmailService:
    """Sends transactional emails."""

    def __init__(self, api_key: Optional[str] = None):
        settings = get_settings()
        self._api_key = api_key if api_key is not None else settings.resend_api_key
        self._from = f"{settings.email_from_name} <{settings.email_from_address}>"
        self._frontend_url = settings.frontend_url

        if self._api_key:
            resend.api_key = self._api_key
        else:
            logger.warning("RESEND_API_KEY not configured. Email functionality is disabled.")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send_subscription_confirmation(self, user: Any, subscription: Any) -> bool:
        """
        Confirm a new subscription to the user.

        Args:
            user: User row (needs ``email`` and ``name``)
            subscription: Subscription row just created

        Returns:
            True if the provider accepted the email
        """
        if not self.enabled:
            logger.info(f"Email disabled, skipping confirmation for subscription {subscription.id}")
            return False

        greeting = f"Hi {user.name}," if user.name else "Hi there,"
        price = _format_amount(subscription.amount, subscription.currency)
        lines = [
            greeting,
            "",
            f"Your subscription is confirmed: {price} per {subscription.interval or 'period'}.",
        ]
        if subscription.trial_end is not None:
            lines.append(f"Your trial runs until {subscription.trial_end:%Y-%m-%d %H:%M} UTC.")
        lines.append(f"Manage your subscription at {self._frontend_url}/account")

        params = {
            "from": self._from,
            "to": [user.email],
            "subject": "Your subscription is confirmed",
            "text": "\n".join(lines),
        }

        try:
            response = await asyncio.to_thread(resend.Emails.send, params)
        except Exception as e:
            logger.warning(f"Failed to send confirmation email to {user.email}: {e}")
            return False

        email_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
        if not email_id:
            logger.warning(f"Confirmation email to {user.email} was not accepted")
            return False

        logger.info(f"Confirmation email {email_id} sent to {user.email}")
        return True


_email_service_instance: Optional[EmailService] = None


def get_email_service() -> EmailService:
    """Get or create email service singleton."""
    global _email_service_instance

    if _email_service_instance is None:
        _email_service_instance = EmailService()

    return _email_service_instance
