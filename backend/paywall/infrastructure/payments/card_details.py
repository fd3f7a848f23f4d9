"""
Card Detail Extraction

Card metadata can sit in several places on a payment intent depending on
what was expanded and which API version produced the payload. Extraction
is an ordered list of strategies; the first one that yields card data wins.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from paywall.domain.subscription import CardDetails
from paywall.infrastructure.payments.stripe_service import StripeServiceError


logger = logging.getLogger(__name__)


@dataclass
class CardExtraction:
    """Card details plus the payment method they came from."""
    card_details: Optional[CardDetails] = None
    payment_method_id: Optional[str] = None


def card_from_dict(card: Optional[Dict[str, Any]]) -> Optional[CardDetails]:
    """Build CardDetails from a provider ``card`` object; None if empty."""
    if not card:
        return None
    details = CardDetails(
        brand=card.get("brand"),
        last4=card.get("last4"),
        exp_month=card.get("exp_month"),
        exp_year=card.get("exp_year"),
        funding=card.get("funding"),
        country=card.get("country"),
    )
    return None if details.is_empty() else details


def _payment_method_id(intent: Dict[str, Any]) -> Optional[str]:
    payment_method = intent.get("payment_method")
    if isinstance(payment_method, dict):
        return payment_method.get("id")
    return payment_method


def latest_charge(intent: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """The intent's charge: expanded ``latest_charge`` or legacy ``charges.data[0]``."""
    charge = intent.get("latest_charge")
    if isinstance(charge, dict):
        return charge
    charges = (intent.get("charges") or {}).get("data") or []
    if charges:
        return charges[0]
    return None


def receipt_url_from_intent(intent: Dict[str, Any]) -> Optional[str]:
    charge = latest_charge(intent)
    if charge:
        return charge.get("receipt_url")
    return None


async def from_expanded_payment_method(intent: Dict[str, Any], provider: Any) -> Optional[CardExtraction]:
    payment_method = intent.get("payment_method")
    if not isinstance(payment_method, dict):
        return None
    details = card_from_dict(payment_method.get("card"))
    if details is None:
        return None
    return CardExtraction(card_details=details, payment_method_id=payment_method.get("id"))


async def from_charge(intent: Dict[str, Any], provider: Any) -> Optional[CardExtraction]:
    charge = latest_charge(intent)
    if not charge:
        return None
    method_details = charge.get("payment_method_details") or {}
    details = card_from_dict(method_details.get("card"))
    if details is None:
        return None
    return CardExtraction(
        card_details=details,
        payment_method_id=charge.get("payment_method") or _payment_method_id(intent),
    )


async def from_payment_method_lookup(intent: Dict[str, Any], provider: Any) -> Optional[CardExtraction]:
    payment_method_id = _payment_method_id(intent)
    if not payment_method_id:
        return None
    try:
        payment_method = await provider.retrieve_payment_method(payment_method_id)
    except StripeServiceError as e:
        logger.warning(f"Card lookup failed for payment method {payment_method_id}: {e}")
        return None
    details = card_from_dict(payment_method.get("card"))
    if details is None:
        return None
    return CardExtraction(card_details=details, payment_method_id=payment_method_id)


CardStrategy = Callable[[Dict[str, Any], Any], Awaitable[Optional[CardExtraction]]]

CARD_DETAIL_STRATEGIES: List[CardStrategy] = [
    from_expanded_payment_method,
    from_charge,
    from_payment_method_lookup,
]


async def extract_card_details(
    intent: Dict[str, Any],
    provider: Any,
    strategies: Optional[List[CardStrategy]] = None,
) -> CardExtraction:
    """
    Try each strategy in order until one yields card data.

    Returns an extraction with only the payment method id when no
    strategy finds a card.
    """
    for strategy in strategies or CARD_DETAIL_STRATEGIES:
        result = await strategy(intent, provider)
        if result is not None:
            return result
    return CardExtraction(payment_method_id=_payment_method_id(intent))
