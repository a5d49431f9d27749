"""Webhook acknowledgment schemas."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from src.models.events import ReconciliationOutcome


class WebhookAck(BaseModel):
    """Acknowledgment returned for every event processed without a fatal error."""

    model_config = ConfigDict(from_attributes=True)

    status: Literal["received"] = Field(default="received", description="Always 'received'")
    event_type: str = Field(description="Provider event type")
    outcome: ReconciliationOutcome = Field(description="Whether the event changed an order")
