"""Integration tests for webhook API endpoints."""

import hashlib
import hmac
import json
import time
from collections.abc import Generator
from typing import Any
from unittest.mock import patch

import pytest
import stripe
from fastapi.testclient import TestClient

from src.core.exceptions import TransientStoreError

WEBHOOK_URL = "/api/v1/webhooks/stripe"
WEBHOOK_SECRET = "whsec_test_webhook_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    """Build a Stripe-Signature header for a payload."""
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def post_event(client: TestClient, event: dict[str, Any]) -> Any:
    payload = json.dumps(event).encode()
    return client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign(payload)})


def checkout_event(order_id: str = "O1", session_id: str = "S1", payment_intent: str = "PI1") -> dict[str, Any]:
    return {
        "id": "evt_checkout",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "metadata": {"orderId": order_id},
                "payment_intent": payment_intent,
                "amount_total": 25000,
                "currency": "zar",
            }
        },
    }


@pytest.fixture
def webhook_client(client: TestClient, engine: Any) -> Generator[TestClient, None, None]:
    """Test client whose reconciliation engine runs over the in-memory store."""
    original = client.app.state.engine
    client.app.state.engine = engine
    yield client
    client.app.state.engine = original


@pytest.fixture
def pending_order(memory_store: Any) -> None:
    """Seed order O1 awaiting checkout S1."""
    memory_store.add_order("O1", stripe_session_id="S1", total=250.0)
    memory_store.add_item("O1", "P1", 2)
    memory_store.add_inventory("P1", quantity=10, reserved=5)


class TestStripeWebhook:
    """Tests for POST /api/v1/webhooks/stripe endpoint."""

    def test_handles_checkout_completed_event(
        self, webhook_client: TestClient, memory_store: Any, pending_order: None
    ) -> None:
        """Test that checkout.session.completed pays the order and runs its effects."""
        response = post_event(webhook_client, checkout_event())

        assert response.status_code == 200
        assert response.json() == {
            "status": "received",
            "event_type": "checkout.session.completed",
            "outcome": "applied",
        }
        assert memory_store.orders["O1"]["status"] == "PAID"
        assert memory_store.orders["O1"]["stripe_payment_intent_id"] == "PI1"
        assert memory_store.inventory["P1"] == {"product_id": "P1", "quantity": 8, "reserved": 3}
        assert len(memory_store.payments) == 1

    def test_redelivered_checkout_is_acknowledged_once(
        self, webhook_client: TestClient, memory_store: Any, pending_order: None
    ) -> None:
        """Test that a redelivery returns 200 without repeating effects."""
        first = post_event(webhook_client, checkout_event())
        second = post_event(webhook_client, checkout_event())

        assert first.json()["outcome"] == "applied"
        assert second.status_code == 200
        assert second.json()["outcome"] == "noop"
        assert memory_store.inventory["P1"]["quantity"] == 8
        assert memory_store.decrement_calls == 1
        assert len(memory_store.payments) == 1

    def test_payment_failure_cancels_order(self, webhook_client: TestClient, memory_store: Any) -> None:
        """Test that charge.failed cancels the open order and fails its payment."""
        memory_store.add_order("O3", stripe_payment_intent_id="PI3")
        memory_store.add_payment("O3", "PI3")

        response = post_event(
            webhook_client,
            {"id": "evt_fail", "type": "charge.failed", "data": {"object": {"id": "ch_1", "payment_intent": "PI3"}}},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "applied"
        assert memory_store.orders["O3"]["status"] == "CANCELLED"
        assert memory_store.payments[0]["status"] == "FAILED"

    def test_unhandled_event_type_is_skipped(self, webhook_client: TestClient) -> None:
        """Test that unrecognized event types are acknowledged and ignored."""
        response = post_event(
            webhook_client,
            {"id": "evt_other", "type": "customer.created", "data": {"object": {"id": "cus_1"}}},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "skipped"

    def test_returns_404_for_unknown_order(self, webhook_client: TestClient) -> None:
        """Test that a checkout for a missing order asks the sender to retry."""
        response = post_event(webhook_client, checkout_event(order_id="O404"))

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
        assert response.json()["retryable"] is True

    def test_returns_503_when_store_unavailable(
        self, webhook_client: TestClient, memory_store: Any, pending_order: None
    ) -> None:
        """Test that a store outage returns 503 with Retry-After."""
        memory_store.failures["try_transition"] = TransientStoreError("connection refused")

        response = post_event(webhook_client, checkout_event())

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "30"
        assert response.json()["error"] == "service_unavailable"
        assert response.json()["retryable"] is True
        assert memory_store.orders["O1"]["status"] == "PENDING"

    def test_returns_400_for_malformed_event(self, webhook_client: TestClient) -> None:
        """Test that a checkout without orderId metadata is rejected."""
        event = checkout_event()
        event["data"]["object"]["metadata"] = {}

        response = post_event(webhook_client, event)

        assert response.status_code == 400
        assert "orderId" in response.json()["message"]
        assert response.json()["retryable"] is False

    def test_returns_400_for_invalid_json(self, webhook_client: TestClient) -> None:
        """Test that a signed but undecodable body is rejected."""
        payload = b"not json"

        response = webhook_client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": sign(payload)})

        assert response.status_code == 400

    def test_returns_400_for_invalid_signature(
        self, webhook_client: TestClient, memory_store: Any, pending_order: None
    ) -> None:
        """Test that 400 is returned for a signature made with another secret."""
        payload = json.dumps(checkout_event()).encode()

        response = webhook_client.post(
            WEBHOOK_URL,
            content=payload,
            headers={"stripe-signature": sign(payload, secret="whsec_other")},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid signature"
        assert memory_store.orders["O1"]["status"] == "PENDING"

    def test_returns_400_when_verification_raises(self, webhook_client: TestClient) -> None:
        """Test that SDK verification errors are mapped to 400."""
        with patch(
            "src.core.stripe.stripe.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("No signatures found", "bad"),
        ):
            response = post_event(webhook_client, checkout_event())

        assert response.status_code == 400

    def test_returns_400_for_missing_signature(self, webhook_client: TestClient) -> None:
        """Test that 400 is returned when signature header is missing."""
        response = webhook_client.post(WEBHOOK_URL, content=json.dumps(checkout_event()).encode())

        assert response.status_code == 400
        assert "Stripe-Signature" in response.json()["message"]

    def test_returns_413_for_oversized_body(self, webhook_client: TestClient) -> None:
        """Test that bodies over the configured limit are rejected."""
        payload = b"x" * 70000

        response = webhook_client.post(WEBHOOK_URL, content=payload, headers={"stripe-signature": "t=1,v1=x"})

        assert response.status_code == 413
        assert response.json()["error"] == "request_too_large"
        assert response.json()["retryable"] is False

    def test_returns_413_for_oversized_chunked_body(
        self, webhook_client: TestClient, memory_store: Any, pending_order: None
    ) -> None:
        """Test that a body sent without Content-Length is still held to the limit."""

        def chunks() -> Generator[bytes, None, None]:
            for _ in range(20):
                yield b"x" * 4096

        response = webhook_client.post(WEBHOOK_URL, content=chunks(), headers={"stripe-signature": "t=1,v1=x"})

        assert response.status_code == 413
        assert response.json()["error"] == "request_too_large"
        assert response.json()["retryable"] is False
        assert memory_store.orders["O1"]["status"] == "PENDING"

    def test_accepts_chunked_body_within_limit(
        self, webhook_client: TestClient, memory_store: Any, pending_order: None
    ) -> None:
        """Test that a streamed body under the limit is read in full and verified."""
        payload = json.dumps(checkout_event()).encode()

        def chunks() -> Generator[bytes, None, None]:
            yield payload[:10]
            yield payload[10:]

        response = webhook_client.post(WEBHOOK_URL, content=chunks(), headers={"stripe-signature": sign(payload)})

        assert response.status_code == 200
        assert memory_store.orders["O1"]["status"] == "PAID"
