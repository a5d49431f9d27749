"""Pytest configuration and fixtures."""

import copy
import os
from collections.abc import Generator, Iterable
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("RECONCILIATION_WORKER_ENABLED", "false")

from src.core.exceptions import InventoryAdjustmentError  # noqa: E402
from src.models.order import OrderStatus  # noqa: E402
from src.models.payment import PaymentStatus  # noqa: E402
from src.models.reconciliation_job import JobStatus, JobType  # noqa: E402
from src.services.order_store import TransitionResult  # noqa: E402


class InMemoryOrderStore:
    """Order store double with the same conditional-update semantics.

    Each operation checks its predicate and writes in one step, like a
    single-row Postgres update. Inventory lines are recorded per
    (order_id, product_id) and never applied twice, like the database
    adjustment function. Set ``failures[method_name]`` to an exception to make
    that method raise it; set ``lose_adjustment_responses`` to apply a line
    and then report it as not applied.
    """

    def __init__(self) -> None:
        self.orders: dict[str, dict[str, Any]] = {}
        self.order_items: list[dict[str, Any]] = []
        self.inventory: dict[str, dict[str, Any]] = {}
        self.payments: list[dict[str, Any]] = []
        self.jobs: list[dict[str, Any]] = []
        self.adjustments: set[tuple[str, str]] = set()
        self.failures: dict[str, Exception] = {}
        self.decrement_calls = 0
        self.lose_adjustment_responses = False

    def _check(self, name: str) -> None:
        if name in self.failures:
            raise self.failures[name]

    # Seeding helpers

    def add_order(self, order_id: str, **fields: Any) -> dict[str, Any]:
        order = {
            "id": order_id,
            "user_id": "user-1",
            "status": OrderStatus.PENDING.value,
            "stripe_session_id": None,
            "stripe_payment_intent_id": None,
            "total": 100.0,
            "currency": "ZAR",
        }
        order.update(fields)
        self.orders[order_id] = order
        return order

    def add_item(self, order_id: str, product_id: str, quantity: int) -> None:
        self.order_items.append({"order_id": order_id, "product_id": product_id, "quantity": quantity})

    def add_inventory(self, product_id: str, quantity: int, reserved: int) -> None:
        self.inventory[product_id] = {"product_id": product_id, "quantity": quantity, "reserved": reserved}

    def add_payment(self, order_id: str, payment_ref: str, status: PaymentStatus = PaymentStatus.COMPLETED) -> None:
        self.payments.append(
            {"order_id": order_id, "stripe_payment_intent_id": payment_ref, "status": status.value}
        )

    # OrderStore interface

    def get_order(self, order_id: str) -> dict[str, Any] | None:
        self._check("get_order")
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    def get_order_items(self, order_id: str) -> list[dict[str, Any]]:
        self._check("get_order_items")
        return [
            {"product_id": item["product_id"], "quantity": item["quantity"]}
            for item in self.order_items
            if item["order_id"] == order_id
        ]

    def try_transition(
        self,
        match: dict[str, str],
        from_statuses: Iterable[OrderStatus],
        to_status: OrderStatus,
        updates: dict[str, Any] | None = None,
    ) -> TransitionResult:
        self._check("try_transition")
        allowed = {status.value for status in from_statuses}
        for order in self.orders.values():
            if all(order.get(k) == v for k, v in match.items()) and order["status"] in allowed:
                order["status"] = to_status.value
                order.update(updates or {})
                return TransitionResult(applied=True, row=copy.deepcopy(order))
        current = self.get_order(match["id"]) if "id" in match else None
        return TransitionResult(applied=False, row=current)

    def decrement_inventory(self, order_id: str, line_items: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if "decrement_inventory" in self.failures:
            raise InventoryAdjustmentError(order_id, list(line_items), str(self.failures["decrement_inventory"]))
        self.decrement_calls += 1
        adjusted = []
        for index, line in enumerate(line_items):
            key = (order_id, line["product_id"])
            row = self.inventory.get(line["product_id"])
            if row is None or key in self.adjustments:
                continue
            row["quantity"] -= line["quantity"]
            row["reserved"] = max(0, row["reserved"] - line["quantity"])
            self.adjustments.add(key)
            if self.lose_adjustment_responses:
                # The write landed but the caller never hears about it.
                raise InventoryAdjustmentError(order_id, list(line_items[index:]), "response lost")
            adjusted.append(dict(row))
        return adjusted

    def upsert_payment_record(
        self,
        order_id: str,
        user_id: str | None,
        payment_ref: str,
        status: PaymentStatus,
        amount: Any,
        currency: str,
        method: str,
    ) -> dict[str, Any] | None:
        self._check("upsert_payment_record")
        if any(p["stripe_payment_intent_id"] == payment_ref for p in self.payments):
            return None
        record = {
            "order_id": order_id,
            "user_id": user_id,
            "stripe_payment_intent_id": payment_ref,
            "status": status.value,
            "amount": amount,
            "currency": currency,
            "method": method,
        }
        self.payments.append(record)
        return dict(record)

    def mark_payment_failed(self, payment_ref: str) -> int:
        self._check("mark_payment_failed")
        changed = 0
        for payment in self.payments:
            if payment["stripe_payment_intent_id"] == payment_ref and payment["status"] != PaymentStatus.FAILED.value:
                payment["status"] = PaymentStatus.FAILED.value
                changed += 1
        return changed

    def enqueue_job(self, order_id: str, job_type: JobType, payload: dict[str, Any]) -> None:
        self._check("enqueue_job")
        if any(j["order_id"] == order_id and j["job_type"] == job_type.value for j in self.jobs):
            return
        self.jobs.append(
            {
                "id": f"job-{len(self.jobs) + 1}",
                "order_id": order_id,
                "job_type": job_type.value,
                "payload": payload,
                "status": JobStatus.PENDING.value,
                "attempts": 0,
                "last_error": None,
                "updated_at": datetime.now(timezone.utc),
            }
        )

    def claim_jobs(self, limit: int) -> list[dict[str, Any]]:
        self._check("claim_jobs")
        claimed = []
        for job in self.jobs:
            if len(claimed) >= limit:
                break
            if job["status"] == JobStatus.PENDING.value:
                job["status"] = JobStatus.PROCESSING.value
                job["updated_at"] = datetime.now(timezone.utc)
                claimed.append(copy.deepcopy(job))
        return claimed

    def complete_job(self, job_id: str) -> None:
        self._check("complete_job")
        for job in self.jobs:
            if job["id"] == job_id and job["status"] == JobStatus.PROCESSING.value:
                job["status"] = JobStatus.COMPLETED.value

    def release_job(
        self,
        job: dict[str, Any],
        error: str,
        max_attempts: int,
        payload: dict[str, Any] | None = None,
    ) -> JobStatus:
        self._check("release_job")
        attempts = job["attempts"] + 1
        status = JobStatus.DEAD if attempts >= max_attempts else JobStatus.PENDING
        for stored in self.jobs:
            if stored["id"] == job["id"] and stored["status"] == JobStatus.PROCESSING.value:
                stored.update(
                    status=status.value,
                    attempts=attempts,
                    last_error=error,
                    payload=payload if payload is not None else stored["payload"],
                )
        return status

    def requeue_stale_jobs(self, older_than: datetime) -> int:
        requeued = 0
        for job in self.jobs:
            if job["status"] == JobStatus.PROCESSING.value and job["updated_at"] < older_than:
                job["status"] = JobStatus.PENDING.value
                requeued += 1
        return requeued


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def memory_store() -> InMemoryOrderStore:
    """Provide an empty in-memory order store."""
    return InMemoryOrderStore()


@pytest.fixture
def engine(memory_store: InMemoryOrderStore, test_settings: Any) -> Any:
    """Provide a ReconciliationEngine over the in-memory store."""
    from src.services.reconciliation_service import ReconciliationEngine

    return ReconciliationEngine(memory_store, test_settings)


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client used by the application lifespan.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    # Configure default mock responses
    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.main.create_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
