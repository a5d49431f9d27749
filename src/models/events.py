"""Canonical payment lifecycle events.

Provider payloads are normalized into one of these before they reach the
reconciliation engine.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


@dataclass(frozen=True)
class CheckoutCompleted:
    """A checkout session finished and has a payment intent attached."""

    order_id: str
    session_id: str
    payment_ref: str
    amount: int | None = None  # minor units, as reported by the provider
    currency: str | None = None


@dataclass(frozen=True)
class PaymentSucceeded:
    """A payment intent settled."""

    payment_ref: str


@dataclass(frozen=True)
class PaymentFailed:
    """A charge or payment intent failed."""

    payment_ref: str


@dataclass(frozen=True)
class Skip:
    """An event type the engine does not act on."""

    event_type: str


CanonicalEvent = Union[CheckoutCompleted, PaymentSucceeded, PaymentFailed]


class ReconciliationOutcome(str, Enum):
    """What applying an event did."""

    APPLIED = "applied"
    NOOP = "noop"
    SKIPPED = "skipped"
