"""Translate Stripe webhook payloads into canonical payment events."""

import json
import logging
from typing import Any

from src.core.exceptions import MalformedEventError
from src.models.events import (
    CanonicalEvent,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    Skip,
)

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
CHARGE_FAILED = "charge.failed"


def decode_event_body(payload: bytes) -> dict[str, Any]:
    """Decode a raw webhook body into an event dict.

    Raises:
        MalformedEventError: If the body is not a JSON object.
    """
    try:
        event = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedEventError("Event body is not valid JSON") from e

    if not isinstance(event, dict):
        raise MalformedEventError("Event body must be a JSON object")
    return event


def _require_str(obj: dict[str, Any], key: str, event_type: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise MalformedEventError(f"{event_type} is missing required field '{key}'")
    return value


def _reference_id(value: Any) -> str | None:
    """Stripe sends related objects either as an ID or expanded."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, dict):
        expanded_id = value.get("id")
        if isinstance(expanded_id, str) and expanded_id:
            return expanded_id
    return None


def _checkout_completed(session: dict[str, Any]) -> CheckoutCompleted:
    metadata = session.get("metadata") or {}
    order_id = metadata.get("orderId") or metadata.get("order_id")
    if not isinstance(order_id, str) or not order_id:
        raise MalformedEventError(f"{CHECKOUT_SESSION_COMPLETED} is missing orderId in metadata")

    session_id = _require_str(session, "id", CHECKOUT_SESSION_COMPLETED)

    payment_ref = _reference_id(session.get("payment_intent"))
    if payment_ref is None:
        raise MalformedEventError(f"{CHECKOUT_SESSION_COMPLETED} has no payment_intent")

    amount = session.get("amount_total")
    currency = session.get("currency")
    return CheckoutCompleted(
        order_id=order_id,
        session_id=session_id,
        payment_ref=payment_ref,
        amount=amount if isinstance(amount, int) else None,
        currency=currency.upper() if isinstance(currency, str) else None,
    )


def normalize_event(event_type: str, data_object: Any) -> CanonicalEvent | Skip:
    """Map one provider event onto a canonical event.

    Args:
        event_type: Stripe event type tag, e.g. "charge.failed".
        data_object: The event's data.object payload.

    Returns:
        The canonical event, or Skip for types that carry no reconciliation
        meaning.

    Raises:
        MalformedEventError: If a recognized event lacks its correlation key.
    """
    if event_type not in (
        CHECKOUT_SESSION_COMPLETED,
        PAYMENT_INTENT_SUCCEEDED,
        PAYMENT_INTENT_FAILED,
        CHARGE_FAILED,
    ):
        return Skip(event_type=event_type)

    if not isinstance(data_object, dict):
        raise MalformedEventError(f"{event_type} has no data object")

    if event_type == CHECKOUT_SESSION_COMPLETED:
        return _checkout_completed(data_object)

    if event_type == PAYMENT_INTENT_SUCCEEDED:
        return PaymentSucceeded(payment_ref=_require_str(data_object, "id", event_type))

    if event_type == PAYMENT_INTENT_FAILED:
        return PaymentFailed(payment_ref=_require_str(data_object, "id", event_type))

    # charge.failed: the charge correlates through its payment intent
    payment_ref = _reference_id(data_object.get("payment_intent"))
    if payment_ref is None:
        raise MalformedEventError(f"{CHARGE_FAILED} has no payment_intent")
    return PaymentFailed(payment_ref=payment_ref)


def normalize_stripe_event(event: dict[str, Any]) -> CanonicalEvent | Skip:
    """Normalize a decoded Stripe event envelope."""
    event_type = event.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("Event is missing its type")

    data = event.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None

    logger.debug("Normalizing %s event %s", event_type, event.get("id"))
    return normalize_event(event_type, data_object)
