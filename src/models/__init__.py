"""Database model type definitions."""

from src.models.events import (
    CanonicalEvent,
    CheckoutCompleted,
    PaymentFailed,
    PaymentSucceeded,
    ReconciliationOutcome,
    Skip,
)
from src.models.inventory import InventoryItem
from src.models.order import NON_TERMINAL_STATUSES, Order, OrderItem, OrderStatus
from src.models.payment import Payment, PaymentStatus
from src.models.reconciliation_job import JobStatus, JobType, ReconciliationJob

__all__ = [
    "CanonicalEvent",
    "CheckoutCompleted",
    "PaymentFailed",
    "PaymentSucceeded",
    "ReconciliationOutcome",
    "Skip",
    "InventoryItem",
    "NON_TERMINAL_STATUSES",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "JobStatus",
    "JobType",
    "ReconciliationJob",
]
