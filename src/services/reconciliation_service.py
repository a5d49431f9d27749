"""Apply canonical payment events to the order aggregate.

Each event is one conditional transition. A transition that matches no row
means another delivery (or a racing event) already resolved the order, which
is success, not failure. Side effects only follow a transition this call
actually applied, so they run at most once per order.
"""

import logging
from typing import Any

from src.core.config import Settings
from src.core.exceptions import (
    InventoryAdjustmentError,
    OrderNotFoundError,
    ReconciliationError,
    SecondaryEffectError,
    TransientStoreError,
)
from src.models.events import (
    CanonicalEvent,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    ReconciliationOutcome,
    Skip,
)
from src.models.order import NON_TERMINAL_STATUSES, OrderStatus
from src.models.payment import PaymentStatus
from src.models.reconciliation_job import JobType
from src.services.order_store import OrderStore

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """Drives orders through PENDING -> PAID / CANCELLED from payment events."""

    def __init__(self, store: OrderStore, settings: Settings) -> None:
        """Initialize the engine.

        Args:
            store: Order store used for every read and conditional write.
            settings: Application settings (currency and payment method defaults).
        """
        self.store = store
        self.settings = settings

    async def apply(self, event: CanonicalEvent | Skip) -> ReconciliationOutcome:
        """Apply any normalized event.

        Args:
            event: Canonical event or Skip.

        Returns:
            ReconciliationOutcome: APPLIED, NOOP or SKIPPED.

        Raises:
            OrderNotFoundError: Checkout completed for an order that does not exist.
            TransientStoreError: The primary transition could not be attempted.
        """
        if isinstance(event, CheckoutCompleted):
            return await self.apply_checkout_completed(event)
        if isinstance(event, PaymentSucceeded):
            return await self.apply_payment_succeeded(event)
        if isinstance(event, PaymentFailed):
            return await self.apply_payment_failed(event)

        logger.info("Ignoring unhandled event type: %s", event.event_type)
        return ReconciliationOutcome.SKIPPED

    async def apply_checkout_completed(self, event: CheckoutCompleted) -> ReconciliationOutcome:
        """Mark the order PAID and run inventory and ledger effects."""
        logger.info("Processing checkout completion for order: %s", event.order_id)

        result = self.store.try_transition(
            match={"id": event.order_id, "stripe_session_id": event.session_id},
            from_statuses=NON_TERMINAL_STATUSES,
            to_status=OrderStatus.PAID,
            updates={"stripe_payment_intent_id": event.payment_ref},
        )

        if not result.applied:
            current = result.row
            if current is None:
                raise OrderNotFoundError(event.order_id)

            if current.get("stripe_session_id") != event.session_id:
                logger.warning(
                    "Checkout session %s does not belong to order %s, ignoring",
                    event.session_id,
                    event.order_id,
                )
            elif current.get("status") == OrderStatus.PAID.value:
                logger.info("Order %s already paid, redelivery ignored", event.order_id)
            else:
                # TODO: a checkout that completes after the order was cancelled has
                # captured money with nothing to fulfil; route it to a refund queue.
                logger.warning(
                    "Checkout completed for order %s in status %s, ignoring",
                    event.order_id,
                    current.get("status"),
                )
            return ReconciliationOutcome.NOOP

        order = result.row
        self._check_amount(order, event)
        await self._decrement_inventory(event.order_id)
        await self._record_payment(order, event.payment_ref)

        logger.info("Successfully processed checkout completion for order: %s", event.order_id)
        return ReconciliationOutcome.APPLIED

    async def apply_payment_succeeded(self, event: PaymentSucceeded) -> ReconciliationOutcome:
        """Confirm a PENDING order whose payment intent settled."""
        logger.info("Processing payment success: %s", event.payment_ref)

        result = self.store.try_transition(
            match={"stripe_payment_intent_id": event.payment_ref},
            from_statuses={OrderStatus.PENDING},
            to_status=OrderStatus.PAID,
        )
        if not result.applied:
            logger.info("No pending order found for payment intent: %s", event.payment_ref)
            return ReconciliationOutcome.NOOP

        logger.info("Order %s marked paid from payment intent %s", result.row["id"], event.payment_ref)
        return ReconciliationOutcome.APPLIED

    async def apply_payment_failed(self, event: PaymentFailed) -> ReconciliationOutcome:
        """Cancel an unresolved order whose payment failed."""
        logger.info("Processing payment failure: %s", event.payment_ref)

        result = self.store.try_transition(
            match={"stripe_payment_intent_id": event.payment_ref},
            from_statuses=NON_TERMINAL_STATUSES,
            to_status=OrderStatus.CANCELLED,
        )
        if not result.applied:
            logger.info("No open order found for failed payment: %s", event.payment_ref)
            return ReconciliationOutcome.NOOP

        order_id = result.row["id"]
        try:
            self.store.mark_payment_failed(event.payment_ref)
        except TransientStoreError as e:
            logger.warning("Failed to update payment status for order %s: %s", order_id, e)
            self._enqueue(order_id, JobType.MARK_PAYMENT_FAILED, {"payment_ref": event.payment_ref})

        logger.info("Successfully processed payment failure for order: %s", order_id)
        return ReconciliationOutcome.APPLIED

    async def replay_job(self, job: dict[str, Any]) -> None:
        """Re-run a secondary effect queued by an earlier failure.

        Raises:
            SecondaryEffectError: The effect failed again, or the job is
                malformed. For inventory the error's remaining lines replace
                the job payload.
        """
        try:
            job_type = JobType(job.get("job_type"))
        except ValueError as e:
            raise SecondaryEffectError(f"Unknown job type: {job.get('job_type')!r}") from e
        order_id = job.get("order_id")
        if not order_id:
            raise SecondaryEffectError(f"{job_type.value} job has no order_id")
        payload = job.get("payload") or {}
        if not isinstance(payload, dict):
            raise SecondaryEffectError(f"{job_type.value} job payload is not an object")

        try:
            if job_type is JobType.DECREMENT_INVENTORY:
                if payload.get("reload_items"):
                    lines = self._line_items(order_id)
                else:
                    lines = _queued_lines(payload)
                self.store.decrement_inventory(order_id, lines)
            elif job_type is JobType.RECORD_PAYMENT:
                payment_ref = _payment_ref(job_type, payload)
                order = self.store.get_order(order_id)
                if order is None:
                    raise SecondaryEffectError(f"Order {order_id} vanished before its payment was recorded")
                self._write_payment(order, payment_ref)
            elif job_type is JobType.MARK_PAYMENT_FAILED:
                self.store.mark_payment_failed(_payment_ref(job_type, payload))
        except TransientStoreError as e:
            raise SecondaryEffectError(str(e)) from e

    def _check_amount(self, order: dict[str, Any], event: CheckoutCompleted) -> None:
        if event.amount is None or order.get("total") is None:
            return
        expected = round(float(order["total"]) * 100)
        if expected != event.amount:
            logger.warning(
                "Order %s total %s does not match checkout amount %d (minor units)",
                order["id"],
                order["total"],
                event.amount,
            )

    def _line_items(self, order_id: str) -> list[dict[str, Any]]:
        items = self.store.get_order_items(order_id)
        return [{"product_id": item["product_id"], "quantity": item["quantity"]} for item in items]

    async def _decrement_inventory(self, order_id: str) -> None:
        try:
            self.store.decrement_inventory(order_id, self._line_items(order_id))
        except InventoryAdjustmentError as e:
            logger.warning("Failed to decrement inventory for order %s: %s", order_id, e)
            self._enqueue(order_id, JobType.DECREMENT_INVENTORY, {"lines": e.remaining})
        except TransientStoreError as e:
            # Items could not be read, so nothing was applied yet.
            logger.warning("Failed to read items of order %s: %s", order_id, e)
            self._enqueue(order_id, JobType.DECREMENT_INVENTORY, {"reload_items": True})

    async def _record_payment(self, order: dict[str, Any], payment_ref: str) -> None:
        try:
            self._write_payment(order, payment_ref)
        except TransientStoreError as e:
            logger.warning("Failed to create payment record for order %s: %s", order["id"], e)
            self._enqueue(order["id"], JobType.RECORD_PAYMENT, {"payment_ref": payment_ref})

    def _write_payment(self, order: dict[str, Any], payment_ref: str) -> None:
        created = self.store.upsert_payment_record(
            order_id=order["id"],
            user_id=order.get("user_id"),
            payment_ref=payment_ref,
            status=PaymentStatus.COMPLETED,
            amount=order.get("total"),
            currency=(order.get("currency") or self.settings.default_currency).upper(),
            method=self.settings.payment_method,
        )
        if created is None:
            logger.info("Payment for intent %s already recorded", payment_ref)

    def _enqueue(self, order_id: str, job_type: JobType, payload: dict[str, Any]) -> None:
        try:
            self.store.enqueue_job(order_id, job_type, payload)
        except ReconciliationError as e:
            logger.error(
                "Could not queue %s retry for order %s: %s (payload=%s)",
                job_type.value,
                order_id,
                e,
                payload,
            )


def _payment_ref(job_type: JobType, payload: dict[str, Any]) -> str:
    payment_ref = payload.get("payment_ref")
    if not isinstance(payment_ref, str) or not payment_ref:
        raise SecondaryEffectError(f"{job_type.value} job payload has no payment_ref")
    return payment_ref


def _queued_lines(payload: dict[str, Any]) -> list[dict[str, Any]]:
    lines = payload.get("lines")
    if not isinstance(lines, list) or not all(
        isinstance(line, dict) and line.get("product_id") and isinstance(line.get("quantity"), int)
        for line in lines
    ):
        raise SecondaryEffectError(f"DECREMENT_INVENTORY job payload has invalid lines: {lines!r}")
    return lines
