"""API error types and the middleware that renders them as JSON envelopes."""

import logging
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from orderdesk.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """An error the client is told about.

    Subclasses fix ``status_code`` and ``error_type``; callers only
    supply the message and, optionally, field-level details.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "api_error"
    default_message: str = "Request failed"

    def __init__(self, message: str | None = None, details: list[dict[str, Any]] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class NotFoundError(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"
    default_message = "Resource not found"


class ValidationError(APIError):
    """Malformed or inconsistent order. Always client-correctable."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "validation_error"
    default_message = "Validation error"


class PaymentError(APIError):
    """The gateway rejected a payment or its outcome could not be determined.

    The order record is kept either way so it can be reconciled; its id
    travels in ``details`` so the client can look it up.
    """

    status_code = status.HTTP_402_PAYMENT_REQUIRED
    error_type = "payment_error"
    default_message = "Payment failed"

    def __init__(
        self,
        message: str | None = None,
        order_id: str | None = None,
        outcome_unknown: bool = False,
    ) -> None:
        self.order_id = order_id
        self.outcome_unknown = outcome_unknown
        if outcome_unknown:
            self.error_type = "payment_outcome_unknown"
        details = [{"loc": ["order_id"], "msg": order_id, "type": "order_reference"}] if order_id else None
        super().__init__(message, details=details)


class InvalidTransitionError(APIError):
    """Requested status change is not an edge of the order lifecycle."""

    status_code = status.HTTP_409_CONFLICT
    error_type = "invalid_transition"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move order from '{current}' to '{target}'")


class WebhookSignatureError(APIError):
    """Webhook signature missing or wrong. The event is dropped."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "unauthorized"
    default_message = "Invalid webhook signature"


class AuthorizationError(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    error_type = "authorization_error"
    default_message = "Access denied"


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Render an error as the standard ``ErrorResponse`` JSON body.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional field-level entries.
        request_id: Caller-supplied X-Request-ID, echoed back for tracing.

    Returns:
        JSONResponse: Formatted error response.
    """
    body = ErrorResponse.build(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Turn exceptions escaping a route into JSON error envelopes.

    ``APIError`` and ``HTTPException`` keep their status code. Anything
    else is logged with its traceback and answered with a generic 500,
    which also tells the payment processor to retry a webhook delivery.
    """
    request_id = request.headers.get("X-Request-ID")
    route = f"{request.method} {request.url.path}"

    try:
        return await call_next(request)
    except APIError as e:
        log = logger.error if e.status_code >= 500 else logger.warning
        log("%s -> %d %s: %s", route, e.status_code, e.error_type, e.message, extra={"request_id": request_id})
        return create_error_response(e.error_type, e.message, e.status_code, e.details, request_id)
    except HTTPException as e:
        logger.warning("%s -> %d: %s", route, e.status_code, e.detail, extra={"request_id": request_id})
        return create_error_response("http_error", str(e.detail), e.status_code, request_id=request_id)
    except Exception:
        logger.exception("%s -> unhandled exception", route, extra={"request_id": request_id})
        return create_error_response(
            "internal_error",
            "An unexpected error occurred",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
