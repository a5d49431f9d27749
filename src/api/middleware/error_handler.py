"""Error middleware mapping webhook failures onto status codes Stripe acts on.

Stripe redelivers an event on any non-2xx response and stops on 2xx, so every
error here states whether redelivery can help.
"""

import logging
from typing import Any, Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Error returned to the caller with a status code and retry hint."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "api_error"
    retryable: bool = True

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class BadRequestError(APIError):
    """Malformed or unauthenticated event; redelivering it cannot succeed."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "bad_request"
    retryable = False


class NotFoundError(APIError):
    """Referenced order does not exist yet."""

    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"


class PayloadTooLargeError(APIError):
    """Event body exceeds the configured limit."""

    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    error_type = "request_too_large"
    retryable = False


class ServiceUnavailableError(APIError):
    """The order store is temporarily unavailable."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_type = "service_unavailable"

    def __init__(self, message: str, retry_after: int = 30) -> None:
        super().__init__(message)
        self.retry_after = retry_after


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    retryable: bool,
    request_id: str | None = None,
) -> JSONResponse:
    """Build the JSON error body shared by every failure path."""
    body = ErrorResponse(
        error=error_type,
        message=message,
        retryable=retryable,
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", exclude_none=True),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Turn APIError and unexpected exceptions into ErrorResponse bodies.

    Unexpected exceptions become a retryable 500 so Stripe redelivers the
    event once the fault is fixed.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        return await call_next(request)

    except APIError as e:
        logger.warning(
            "%s (%d): %s",
            e.error_type,
            e.status_code,
            e.message,
            extra={"request_id": request_id},
        )
        response = create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            retryable=e.retryable,
            request_id=request_id,
        )
        if isinstance(e, ServiceUnavailableError):
            response.headers["Retry-After"] = str(e.retry_after)
        return response

    except Exception:
        logger.exception("Unhandled exception", extra={"request_id": request_id})
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            retryable=True,
            request_id=request_id,
        )
