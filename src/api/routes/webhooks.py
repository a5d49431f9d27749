"""Webhook API routes for external service integrations."""

import logging

from fastapi import APIRouter, Request, status

from src.api.deps import AppSettings, Engine
from src.api.middleware.error_handler import (
    BadRequestError,
    NotFoundError,
    PayloadTooLargeError,
    ServiceUnavailableError,
)
from src.core.exceptions import MalformedEventError, OrderNotFoundError, TransientStoreError
from src.core.stripe import verify_webhook_signature
from src.schemas.webhook import WebhookAck
from src.services.event_normalizer import decode_event_body, normalize_stripe_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def read_limited_body(request: Request, max_size: int) -> bytes:
    """Read the request body, stopping once it exceeds max_size bytes.

    Raises:
        PayloadTooLargeError: The streamed body is larger than max_size.
    """
    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_size:
            logger.warning("Webhook body exceeded %d bytes while streaming", max_size)
            raise PayloadTooLargeError(f"Request body exceeds maximum size of {max_size} bytes")
    return bytes(body)


@router.post(
    "/stripe",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Handle Stripe webhooks",
    description="Receives Stripe payment lifecycle events and reconciles them against orders.",
)
async def stripe_webhook(request: Request, engine: Engine, settings: AppSettings) -> WebhookAck:
    """Handle Stripe webhook events.

    Handles:
    - checkout.session.completed: marks the order paid, decrements inventory, records the payment
    - payment_intent.succeeded: marks a pending order paid
    - charge.failed / payment_intent.payment_failed: cancels an open order, fails its payment

    Any other type is acknowledged and ignored. Redeliveries of an event
    that was already applied are acknowledged too.

    Args:
        request: FastAPI request object for reading raw body and headers.
        engine: Reconciliation engine.
        settings: Application settings.

    Returns:
        WebhookAck: Acknowledgment with the reconciliation outcome.

    Raises:
        BadRequestError: 400 for a bad signature or malformed event.
        NotFoundError: 404 when the order of a completed checkout does not exist.
        ServiceUnavailableError: 503 when the order store is unavailable.
        PayloadTooLargeError: 413 when a streamed body exceeds the size limit.
    """
    # Get raw body for signature verification
    payload = await read_limited_body(request, settings.max_request_body_size)

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.error("Missing Stripe-Signature header in webhook request")
        raise BadRequestError("Missing Stripe-Signature header")

    try:
        verify_webhook_signature(payload, sig_header, settings.stripe_webhook_secret)
    except ValueError as e:
        logger.error("Invalid webhook signature: %s", str(e))
        raise BadRequestError("Invalid signature") from e

    try:
        event = decode_event_body(payload)
        canonical = normalize_stripe_event(event)
    except MalformedEventError as e:
        logger.warning("Malformed webhook event: %s", e)
        raise BadRequestError(str(e)) from e

    event_type = event["type"]
    logger.info("Processing Stripe webhook event: %s (%s)", event_type, event.get("id"))

    try:
        outcome = await engine.apply(canonical)
    except OrderNotFoundError as e:
        logger.error("Error handling %s: %s", event_type, e)
        raise NotFoundError(str(e)) from e
    except TransientStoreError as e:
        logger.error("Error handling %s: %s", event_type, e)
        raise ServiceUnavailableError("Order store unavailable, retry later") from e

    logger.info("Processed %s: %s", event_type, outcome.value)
    return WebhookAck(event_type=event_type, outcome=outcome)
