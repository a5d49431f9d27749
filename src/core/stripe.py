"""Stripe webhook signature verification."""

import logging

import stripe

logger = logging.getLogger(__name__)


def verify_webhook_signature(payload: bytes, sig_header: str, webhook_secret: str) -> None:
    """Verify a Stripe webhook signature.

    The event body itself is decoded separately; this only authenticates it.

    Args:
        payload: Raw webhook payload bytes.
        sig_header: Stripe-Signature header value.
        webhook_secret: Signing secret for the endpoint.

    Raises:
        ValueError: If signature is invalid or Stripe not configured.
    """
    if not webhook_secret:
        raise ValueError("Stripe webhook secret is not configured. Please set STRIPE_WEBHOOK_SECRET environment variable.")

    try:
        stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except stripe.SignatureVerificationError as e:
        logger.warning("Invalid webhook signature: %s", str(e))
        raise ValueError("Invalid webhook signature") from e
