"""Outbox rows for secondary effects that need another attempt."""

from datetime import datetime
from enum import Enum
from typing import Any, TypedDict


class JobType(str, Enum):
    """Secondary effects that can be replayed."""

    DECREMENT_INVENTORY = "DECREMENT_INVENTORY"
    RECORD_PAYMENT = "RECORD_PAYMENT"
    MARK_PAYMENT_FAILED = "MARK_PAYMENT_FAILED"


class JobStatus(str, Enum):
    """Job lifecycle: PENDING -> PROCESSING -> COMPLETED, or DEAD when exhausted."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    DEAD = "DEAD"


class ReconciliationJob(TypedDict):
    """reconciliation_jobs table row. Unique on (order_id, job_type)."""

    id: str
    order_id: str
    job_type: str
    payload: dict[str, Any]
    status: str
    attempts: int
    last_error: str | None
    created_at: datetime
    updated_at: datetime
