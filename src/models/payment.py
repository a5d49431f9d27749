"""Payment ledger type definitions."""

from datetime import datetime
from enum import Enum
from typing import TypedDict


class PaymentStatus(str, Enum):
    """Payment ledger status values."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Payment(TypedDict):
    """Payment table row representation.

    stripe_payment_intent_id is unique, so at most one row exists per
    successful checkout.
    """

    id: str
    order_id: str
    user_id: str | None
    amount: float
    currency: str
    status: str
    method: str
    stripe_payment_intent_id: str
    created_at: datetime
    updated_at: datetime


class PaymentCreate(TypedDict, total=False):
    """Data written when recording a payment."""

    order_id: str
    user_id: str | None
    amount: float
    currency: str
    status: str
    method: str
    stripe_payment_intent_id: str
    updated_at: str
