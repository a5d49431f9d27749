"""Domain exceptions raised while reconciling payment events."""

from typing import Any


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class MalformedEventError(ReconciliationError):
    """Payload is undecodable or lacks a required correlation field.

    Never retryable: redelivering the same payload cannot fix it.
    """


class OrderNotFoundError(ReconciliationError):
    """The order referenced by a checkout event does not exist."""

    def __init__(self, order_id: str) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class TransientStoreError(ReconciliationError):
    """The order store could not be reached or rejected the request.

    Retryable: the caller should ask the provider to redeliver.
    """


class SecondaryEffectError(ReconciliationError):
    """A side effect following an applied transition failed."""


class InventoryAdjustmentError(SecondaryEffectError):
    """Inventory decrement stopped before every line was adjusted.

    Attributes:
        order_id: Order whose lines were being applied.
        remaining: Lines that were not adjusted, in original order.
    """

    def __init__(self, order_id: str, remaining: list[dict[str, Any]], reason: str) -> None:
        self.order_id = order_id
        self.remaining = remaining
        super().__init__(
            f"Inventory decrement for order {order_id} stopped with "
            f"{len(remaining)} line(s) left: {reason}"
        )
