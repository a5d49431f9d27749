"""Order model type definitions for database operations."""

from datetime import datetime
from enum import Enum
from typing import TypedDict


class OrderStatus(str, Enum):
    """Order status values matching database enum."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        """PAID and CANCELLED admit no further transitions."""
        return self in (OrderStatus.PAID, OrderStatus.CANCELLED)


# Statuses a checkout completion or payment failure may move an order out of
NON_TERMINAL_STATUSES: frozenset[OrderStatus] = frozenset(
    status for status in OrderStatus if not status.is_terminal
)


class Order(TypedDict):
    """Order table row representation.

    Maps directly to the orders table. Rows are created PENDING by the
    checkout flow; reconciliation only advances the status.
    """

    id: str
    user_id: str | None
    status: str
    stripe_session_id: str | None
    stripe_payment_intent_id: str | None
    total: float
    currency: str | None
    created_at: datetime
    updated_at: datetime


class OrderItem(TypedDict):
    """Order line item row, immutable once the order exists."""

    order_id: str
    product_id: str
    quantity: int
