"""Conditional read-modify-write operations over the order tables.

Every mutation here is a single PostgREST statement whose filters or conflict
keys encode the expected prior state, so concurrent or duplicate callers
resolve through Postgres row-level atomicity: one write lands, the rest see no
rows. Inventory is the one multi-row step; it goes through a database function
so the decrement and its per-order marker commit together.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.exceptions import InventoryAdjustmentError, TransientStoreError
from src.models.inventory import InventoryItem
from src.models.order import Order, OrderItem, OrderStatus
from src.models.payment import Payment, PaymentCreate, PaymentStatus
from src.models.reconciliation_job import JobStatus, JobType, ReconciliationJob

logger = logging.getLogger(__name__)

# Inventory adjustment function and its retry configuration
ADJUSTMENT_FUNCTION = "apply_inventory_adjustment"
ADJUSTMENT_STATUSES = frozenset({"applied", "duplicate", "missing"})
ADJUSTMENT_ATTEMPTS = 3
ADJUSTMENT_MIN_WAIT_SECONDS = 0.05
ADJUSTMENT_MAX_WAIT_SECONDS = 1


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TransitionResult:
    """Result of a conditional status transition.

    row is the updated order when applied, otherwise the order as it
    currently stands (None if it could not be looked up).
    """

    applied: bool
    row: Order | None


class OrderStore:
    """Order, inventory, payment and outbox persistence on Supabase."""

    def __init__(self, client: Client) -> None:
        """Initialize the store.

        Args:
            client: Shared Supabase client created at application startup.
        """
        self.client = client

    def _execute(self, query: Any, operation: str) -> Any:
        """Run a query, mapping transport and API failures to TransientStoreError."""
        try:
            return query.execute()
        except PostgrestAPIError as e:
            raise TransientStoreError(f"Store rejected {operation}: {e.message}") from e
        except httpx.HTTPError as e:
            raise TransientStoreError(f"Store unreachable during {operation}: {e}") from e

    # Orders

    def get_order(self, order_id: str) -> Order | None:
        """Get an order by ID.

        Args:
            order_id: The order's ID.

        Returns:
            dict | None: The order data or None if not found.
        """
        response = self._execute(
            self.client.table("orders").select("*").eq("id", order_id).maybe_single(),
            "order lookup",
        )
        return response.data if response and response.data else None

    def get_order_items(self, order_id: str) -> list[OrderItem]:
        """Get the line items of an order."""
        response = self._execute(
            self.client.table("order_items").select("product_id, quantity").eq("order_id", order_id),
            "order items lookup",
        )
        return response.data or []

    def try_transition(
        self,
        match: dict[str, str],
        from_statuses: Iterable[OrderStatus],
        to_status: OrderStatus,
        updates: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Move an order to a new status if it is still in an expected one.

        Args:
            match: Column equality predicates identifying the order, e.g.
                {"id": ..., "stripe_session_id": ...}.
            from_statuses: Statuses the order must currently be in.
            to_status: Status to write.
            updates: Extra columns to stamp in the same write.

        Returns:
            TransitionResult: applied is True only if this call changed the row.
        """
        data = {"status": to_status.value, "updated_at": _utcnow(), **(updates or {})}

        query = self.client.table("orders").update(data)
        for column, value in match.items():
            query = query.eq(column, value)
        query = query.in_("status", sorted(status.value for status in from_statuses))

        response = self._execute(query, f"transition to {to_status.value}")
        if response.data:
            if len(response.data) > 1:
                logger.warning("Transition to %s matched %d orders for %s", to_status.value, len(response.data), match)
            return TransitionResult(applied=True, row=response.data[0])

        current = self.get_order(match["id"]) if "id" in match else None
        return TransitionResult(applied=False, row=current)

    # Inventory

    @retry(
        retry=retry_if_exception_type(TransientStoreError),
        stop=stop_after_attempt(ADJUSTMENT_ATTEMPTS),
        wait=wait_exponential(multiplier=ADJUSTMENT_MIN_WAIT_SECONDS, max=ADJUSTMENT_MAX_WAIT_SECONDS),
        reraise=True,
    )
    def _adjust_line(self, order_id: str, product_id: str, quantity: int) -> dict[str, Any]:
        """Apply one order line through the apply_inventory_adjustment function.

        The function decrements the row and records (order_id, product_id) in
        inventory_adjustments in one transaction, so calling it again for a
        line that already landed is a no-op. That makes a retry after a lost
        response safe.
        """
        response = self._execute(
            self.client.rpc(
                ADJUSTMENT_FUNCTION,
                {"p_order_id": order_id, "p_product_id": product_id, "p_quantity": quantity},
            ),
            "inventory adjustment",
        )
        result = response.data
        if isinstance(result, list):
            result = result[0] if result else None
        if not isinstance(result, dict) or result.get("status") not in ADJUSTMENT_STATUSES:
            raise TransientStoreError(f"Unexpected inventory adjustment result for {product_id}: {result!r}")
        return result

    def decrement_inventory(
        self, order_id: str, line_items: Sequence[dict[str, Any]]
    ) -> list[InventoryItem]:
        """Apply an order's line quantities to inventory.

        Lines are applied in order, each at most once per order. If one cannot
        be applied, the error lists it and every line after it so a retry
        resumes where this stopped; lines that did land are skipped on replay.

        Args:
            order_id: Order the lines belong to.
            line_items: Dicts with product_id and quantity.

        Returns:
            list[dict]: Inventory rows adjusted by this call.

        Raises:
            InventoryAdjustmentError: If a line could not be applied.
        """
        adjusted: list[InventoryItem] = []
        for index, line in enumerate(line_items):
            product_id = line["product_id"]
            try:
                result = self._adjust_line(order_id, product_id, int(line["quantity"]))
            except TransientStoreError as e:
                raise InventoryAdjustmentError(order_id, list(line_items[index:]), str(e)) from e

            status = result["status"]
            if status == "missing":
                logger.warning("No inventory row for product %s in order %s", product_id, order_id)
                continue
            if status == "duplicate":
                logger.info("Inventory for product %s already adjusted for order %s", product_id, order_id)
                continue

            row: InventoryItem = {
                "product_id": product_id,
                "quantity": result["quantity"],
                "reserved": result["reserved"],
            }
            logger.info("Decremented inventory for product %s, remaining: %d", product_id, row["quantity"])
            adjusted.append(row)

        return adjusted

    # Payments

    def upsert_payment_record(
        self,
        order_id: str,
        user_id: str | None,
        payment_ref: str,
        status: PaymentStatus,
        amount: Any,
        currency: str,
        method: str,
    ) -> Payment | None:
        """Insert a payment ledger row unless one exists for the payment reference.

        Returns:
            dict | None: The inserted row, or None if it was already recorded.
        """
        record: PaymentCreate = {
            "order_id": order_id,
            "user_id": user_id,
            "amount": amount,
            "currency": currency,
            "status": status.value,
            "method": method,
            "stripe_payment_intent_id": payment_ref,
            "updated_at": _utcnow(),
        }
        response = self._execute(
            self.client.table("payments").upsert(
                record,
                on_conflict="stripe_payment_intent_id",
                ignore_duplicates=True,
            ),
            "payment record",
        )
        return response.data[0] if response.data else None

    def mark_payment_failed(self, payment_ref: str) -> int:
        """Mark the ledger row for a payment reference FAILED.

        Returns:
            int: Rows changed; 0 when no row exists or it is already FAILED.
        """
        response = self._execute(
            self.client.table("payments")
            .update({"status": PaymentStatus.FAILED.value, "updated_at": _utcnow()})
            .eq("stripe_payment_intent_id", payment_ref)
            .neq("status", PaymentStatus.FAILED.value),
            "payment failure update",
        )
        return len(response.data) if response.data else 0

    # Outbox

    def enqueue_job(self, order_id: str, job_type: JobType, payload: dict[str, Any]) -> None:
        """Record a secondary effect for the worker to retry.

        A job already queued for the same order and type is left untouched.
        """
        self._execute(
            self.client.table("reconciliation_jobs").upsert(
                {
                    "order_id": order_id,
                    "job_type": job_type.value,
                    "payload": payload,
                    "status": JobStatus.PENDING.value,
                    "attempts": 0,
                },
                on_conflict="order_id,job_type",
                ignore_duplicates=True,
            ),
            "job enqueue",
        )

    def claim_jobs(self, limit: int) -> list[ReconciliationJob]:
        """Claim up to limit pending jobs for this worker.

        Each job is claimed with its own PENDING -> PROCESSING update, so a
        job picked up by another worker in between is simply not returned.
        """
        response = self._execute(
            self.client.table("reconciliation_jobs")
            .select("*")
            .eq("status", JobStatus.PENDING.value)
            .order("created_at")
            .limit(limit),
            "job scan",
        )

        claimed: list[ReconciliationJob] = []
        for job in response.data or []:
            result = self._execute(
                self.client.table("reconciliation_jobs")
                .update({"status": JobStatus.PROCESSING.value, "updated_at": _utcnow()})
                .eq("id", job["id"])
                .eq("status", JobStatus.PENDING.value),
                "job claim",
            )
            if result.data:
                claimed.append(result.data[0])
        return claimed

    def complete_job(self, job_id: str) -> None:
        """Mark a claimed job COMPLETED."""
        self._execute(
            self.client.table("reconciliation_jobs")
            .update({"status": JobStatus.COMPLETED.value, "last_error": None, "updated_at": _utcnow()})
            .eq("id", job_id)
            .eq("status", JobStatus.PROCESSING.value),
            "job completion",
        )

    def release_job(
        self,
        job: ReconciliationJob,
        error: str,
        max_attempts: int,
        payload: dict[str, Any] | None = None,
    ) -> JobStatus:
        """Return a failed job to the queue, or bury it once attempts run out.

        Returns:
            JobStatus: PENDING if it will be retried, DEAD otherwise.
        """
        attempts = int(job.get("attempts") or 0) + 1
        status = JobStatus.DEAD if attempts >= max_attempts else JobStatus.PENDING
        self._execute(
            self.client.table("reconciliation_jobs")
            .update(
                {
                    "status": status.value,
                    "attempts": attempts,
                    "last_error": error,
                    "payload": payload if payload is not None else job.get("payload"),
                    "updated_at": _utcnow(),
                }
            )
            .eq("id", job["id"])
            .eq("status", JobStatus.PROCESSING.value),
            "job release",
        )
        return status

    def requeue_stale_jobs(self, older_than: datetime) -> int:
        """Put PROCESSING jobs whose lease expired back to PENDING.

        Returns:
            int: Number of jobs requeued.
        """
        response = self._execute(
            self.client.table("reconciliation_jobs")
            .update({"status": JobStatus.PENDING.value, "updated_at": _utcnow()})
            .eq("status", JobStatus.PROCESSING.value)
            .lt("updated_at", older_than.isoformat()),
            "stale job requeue",
        )
        return len(response.data) if response.data else 0
