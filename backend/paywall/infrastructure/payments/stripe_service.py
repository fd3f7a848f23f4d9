"""
Stripe Payment Service

Infrastructure service for Stripe billing: customers, hosted checkout,
subscription updates, payment lookups and webhook verification.

Every SDK object is returned as a plain dict so callers never depend on
the SDK's object model. Every SDK error becomes StripeServiceError; there
are no retries inside a request.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

import stripe
from stripe import StripeError

from paywall.config.settings import get_settings
from paywall.infrastructure.exceptions import ConfigurationError, ProviderError


logger = logging.getLogger(__name__)


class StripeServiceError(ProviderError):
    """Base exception for Stripe service errors."""
    pass


class SignatureVerificationError(StripeServiceError):
    """Raised when a webhook payload or its signature cannot be verified."""
    pass


def _to_dict(obj: Any) -> Dict[str, Any]:
    """Convert a StripeObject (any SDK version) to a plain dict."""
    if obj is None:
        return {}
    if type(obj) is dict:
        return obj
    for method in ("to_dict_recursive", "to_dict"):
        converter = getattr(obj, method, None)
        if callable(converter):
            return converter()
    return dict(obj)


def _user_message(error: StripeError) -> str:
    return getattr(error, "user_message", None) or str(error)


class StripeService:
    """
    Stripe payment processing service.

    Methods are async so services can await them uniformly; the SDK calls
    themselves are synchronous.
    """

    def __init__(self):
        """Initialize Stripe with API key from settings."""
        settings = get_settings()
        self._api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret

        if self._api_key:
            stripe.api_key = self._api_key

    # =========================================================================
    # Customer Management
    # =========================================================================

    async def create_customer(
        self,
        user_id: str,
        email: str,
        name: Optional[str] = None,
    ) -> str:
        """
        Create a new Stripe customer.

        Returns:
            Stripe customer ID
        """
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name,
                metadata={"userId": user_id},
            )
            logger.info(f"Created Stripe customer {customer['id']} for user {user_id}")
            return customer["id"]

        except StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise StripeServiceError(f"Failed to create customer: {_user_message(e)}", original_error=e)

    async def get_or_create_customer(
        self,
        user_id: str,
        email: str,
        name: Optional[str] = None,
        existing_customer_id: Optional[str] = None,
    ) -> str:
        """
        Get existing customer or create new one.

        Returns:
            Stripe customer ID
        """
        if existing_customer_id:
            try:
                customer = stripe.Customer.retrieve(existing_customer_id)
                if not customer.get("deleted"):
                    return existing_customer_id
            except StripeError:
                logger.warning(f"Customer {existing_customer_id} not found, creating new")

        return await self.create_customer(user_id, email, name)

    # =========================================================================
    # Checkout Session
    # =========================================================================

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        trial_period_days: int = 0,
    ) -> Dict[str, Any]:
        """
        Create a hosted Checkout Session in subscription mode.

        Args:
            customer_id: Stripe customer ID
            price_id: Price of the plan being purchased
            success_url: Redirect after successful payment
            cancel_url: Redirect after cancelled payment
            metadata: Copied onto both the session and the subscription
            trial_period_days: Trial length; 0 for no trial

        Returns:
            Session dict with ``id`` and ``url``
        """
        subscription_data: Dict[str, Any] = {"metadata": metadata}
        if trial_period_days > 0:
            subscription_data["trial_period_days"] = trial_period_days

        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=f"{success_url}?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=cancel_url,
                billing_address_collection="auto",
                metadata=metadata,
                subscription_data=subscription_data,
            )
            logger.info(
                f"Created checkout session {session['id']} for customer {customer_id}, "
                f"price={price_id}, trial_days={trial_period_days}"
            )
            return _to_dict(session)

        except StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise StripeServiceError(f"Failed to create checkout: {_user_message(e)}", original_error=e)

    async def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        try:
            return _to_dict(stripe.checkout.Session.retrieve(session_id))
        except StripeError as e:
            logger.warning(f"Failed to retrieve checkout session {session_id}: {e}")
            raise StripeServiceError(f"Failed to retrieve checkout: {_user_message(e)}", original_error=e)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Retrieve a subscription by ID."""
        try:
            return _to_dict(stripe.Subscription.retrieve(subscription_id))
        except StripeError as e:
            logger.warning(f"Failed to retrieve subscription {subscription_id}: {e}")
            raise StripeServiceError(f"Failed to retrieve subscription: {_user_message(e)}", original_error=e)

    async def swap_subscription_price(
        self,
        subscription_id: str,
        new_price_id: str,
    ) -> Dict[str, Any]:
        """
        Replace the subscription's first item price without proration.

        Used for the initial -> recurring upgrade.
        """
        try:
            subscription = _to_dict(stripe.Subscription.retrieve(subscription_id))
            items = (subscription.get("items") or {}).get("data") or []
            if not items:
                raise StripeServiceError(f"Subscription {subscription_id} has no items")

            updated = stripe.Subscription.modify(
                subscription_id,
                items=[{"id": items[0]["id"], "price": new_price_id}],
                proration_behavior="none",
                metadata={"planType": "recurring", "upgraded": "true"},
            )
            logger.info(f"Swapped subscription {subscription_id} to price {new_price_id}")
            return _to_dict(updated)

        except StripeError as e:
            logger.error(f"Failed to update subscription {subscription_id}: {e}")
            raise StripeServiceError(f"Failed to update subscription: {_user_message(e)}", original_error=e)

    async def set_cancel_at_period_end(
        self,
        subscription_id: str,
        cancel_at_period_end: bool,
    ) -> Dict[str, Any]:
        """Schedule (or unschedule) cancellation at the end of the period."""
        try:
            subscription = stripe.Subscription.modify(
                subscription_id,
                cancel_at_period_end=cancel_at_period_end,
            )
            logger.info(
                f"Set cancel_at_period_end={cancel_at_period_end} "
                f"on subscription {subscription_id}"
            )
            return _to_dict(subscription)

        except StripeError as e:
            logger.error(f"Failed to update cancellation: {e}")
            raise StripeServiceError(f"Failed to update cancellation: {_user_message(e)}", original_error=e)

    # =========================================================================
    # Payment Lookups
    # =========================================================================

    async def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        """Retrieve a payment intent with its payment method and latest charge expanded."""
        try:
            intent = stripe.PaymentIntent.retrieve(
                payment_intent_id,
                expand=["payment_method", "latest_charge"],
            )
            return _to_dict(intent)
        except StripeError as e:
            logger.warning(f"Failed to retrieve payment intent {payment_intent_id}: {e}")
            raise StripeServiceError(f"Failed to retrieve payment intent: {_user_message(e)}", original_error=e)

    async def retrieve_invoice(self, invoice_id: str) -> Dict[str, Any]:
        """Retrieve an invoice with its payments list expanded."""
        try:
            return _to_dict(stripe.Invoice.retrieve(invoice_id, expand=["payments"]))
        except StripeError as e:
            logger.warning(f"Failed to retrieve invoice {invoice_id}: {e}")
            raise StripeServiceError(f"Failed to retrieve invoice: {_user_message(e)}", original_error=e)

    async def retrieve_charge(self, charge_id: str) -> Dict[str, Any]:
        try:
            return _to_dict(stripe.Charge.retrieve(charge_id))
        except StripeError as e:
            logger.warning(f"Failed to retrieve charge {charge_id}: {e}")
            raise StripeServiceError(f"Failed to retrieve charge: {_user_message(e)}", original_error=e)

    async def retrieve_payment_method(self, payment_method_id: str) -> Dict[str, Any]:
        try:
            return _to_dict(stripe.PaymentMethod.retrieve(payment_method_id))
        except StripeError as e:
            logger.warning(f"Failed to retrieve payment method {payment_method_id}: {e}")
            raise StripeServiceError(f"Failed to retrieve payment method: {_user_message(e)}", original_error=e)

    # =========================================================================
    # Catalog (seed script)
    # =========================================================================

    async def create_product_with_price(
        self,
        name: str,
        description: str,
        amount: int,
        currency: str,
        interval: str,
        interval_count: int = 1,
    ) -> Tuple[str, str]:
        """
        Create a product and its recurring price.

        Returns:
            (product_id, price_id)
        """
        try:
            product = stripe.Product.create(name=name, description=description)
            price = stripe.Price.create(
                product=product["id"],
                unit_amount=amount,
                currency=currency,
                recurring={"interval": interval, "interval_count": interval_count},
            )
            logger.info(f"Created product {product['id']} with price {price['id']}")
            return product["id"], price["id"]

        except StripeError as e:
            logger.error(f"Failed to create product {name}: {e}")
            raise StripeServiceError(f"Failed to create product: {_user_message(e)}", original_error=e)

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> Dict[str, Any]:
        """
        Verify webhook signature and parse the event.

        Args:
            payload: Raw request body, exactly as received
            signature: Stripe-Signature header

        Returns:
            Event as a plain dict

        Raises:
            SignatureVerificationError if payload or signature is invalid
            ConfigurationError if no webhook secret is configured
        """
        if not self._webhook_secret:
            raise ConfigurationError("Stripe webhook secret is not configured", missing_keys=["STRIPE_WEBHOOK_SECRET"])

        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
        except ValueError as e:
            raise SignatureVerificationError(f"Invalid payload: {e}", original_error=e)
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationError(f"Invalid signature: {e}", original_error=e)

        return json.loads(payload)


# =============================================================================
# Singleton Instance (Dependency Injection Ready)
# =============================================================================

_stripe_service_instance: Optional[StripeService] = None


def get_stripe_service() -> StripeService:
    """Get or create Stripe service singleton."""
    global _stripe_service_instance

    if _stripe_service_instance is None:
        _stripe_service_instance = StripeService()

    return _stripe_service_instance
