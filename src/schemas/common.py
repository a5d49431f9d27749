"""Health check and error body schemas."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Health check outcome."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness check body. Never touches the order store."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str = "0.1.0"


class CheckResult(BaseModel):
    """One dependency queried by the readiness check."""

    name: str
    healthy: bool
    latency_ms: float | None = None
    error: str | None = None


class ReadinessResponse(BaseModel):
    """Readiness check body; unhealthy when the order store cannot be queried."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    checks: list[CheckResult] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Body of every non-2xx response.

    retryable tells the sender whether redelivering the same event can
    succeed (404, 503, 500) or never will (400, 413).
    """

    error: str = Field(description="Error category, e.g. bad_request or service_unavailable")
    message: str = Field(description="Human-readable error description")
    retryable: bool = Field(description="Whether redelivering the event may succeed")
    request_id: str | None = Field(default=None, description="X-Request-ID of the failed request")
    timestamp: datetime = Field(default_factory=_utcnow)
