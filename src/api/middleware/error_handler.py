"""Error types raised by the checkout API and their JSON rendering.

Every ``APIError`` subclass fixes its HTTP status and ``error`` type; the
handler and middleware below turn them, plus anything unexpected, into the
shared ``ErrorResponse`` body.
"""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for errors returned to API clients.

    Attributes:
        message: Human-readable error message.
        status_code: HTTP status code of the response.
        error_type: Machine-readable ``error`` value of the response.
        details: Optional per-field details.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type: str = "api_error"

    def __init__(
        self,
        message: str,
        details: list[dict[str, Any]] | None = None,
        *,
        status_code: int | None = None,
        error_type: str | None = None,
    ) -> None:
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type
        super().__init__(message)


class ValidationError(APIError):
    """The request cannot be processed as sent (empty cart, missing field)."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "validation_error"


class CouponErrorReason:
    """Reasons a coupon cannot be applied to a cart."""

    INELIGIBLE = "ineligible"
    LIMIT_REACHED = "limitReached"
    BELOW_MINIMUM = "belowMinimum"
    INVALID_CONFIGURATION = "invalidConfiguration"


class CouponError(ValidationError):
    """Coupon could not be applied.

    ``reason`` is one of the CouponErrorReason values and reaches clients
    as the error type, e.g. ``coupon_belowMinimum``.
    """

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message, error_type=f"coupon_{reason}")
        self.reason = reason


class AuthenticationError(APIError):
    """Missing, expired or forged access token."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_type = "authentication_error"


class AuthorizationError(APIError):
    """Authenticated, but not allowed to touch the resource."""

    status_code = status.HTTP_403_FORBIDDEN
    error_type = "authorization_error"


class NotFoundError(APIError):
    """Order, invoice or coupon does not exist for the caller."""

    status_code = status.HTTP_404_NOT_FOUND
    error_type = "not_found"

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message, details)


class ConflictError(APIError):
    """The current state forbids the operation (duplicate invoice, paid order)."""

    status_code = status.HTTP_409_CONFLICT
    error_type = "conflict"


class SignatureError(APIError):
    """Webhook payload failed signature verification."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "invalid_signature"


class UpstreamError(APIError):
    """The payment gateway rejected or failed a call."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "upstream_error"


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
) -> JSONResponse:
    """Render an ``ErrorResponse`` body.

    Args:
        error_type: Value of the ``error`` field.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Echo of the caller's X-Request-ID.

    Returns:
        JSONResponse: The error response.
    """
    body = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json", exclude_none=True))


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Exception handler for APIError raised by routes and dependencies."""
    request_id = request.headers.get("X-Request-ID")
    logger.warning(
        "%s %s failed: %s - %s",
        request.method,
        request.url.path,
        exc.error_type,
        exc.message,
        extra={"request_id": request_id, "status_code": exc.status_code},
    )
    return create_error_response(
        error_type=exc.error_type,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Turn any exception escaping a route into an ``ErrorResponse``.

    Unexpected exceptions are logged with their stack trace and answered
    with a generic 500 so internals never reach the client.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: The route's response or the rendered error.
    """
    try:
        return await call_next(request)

    except APIError as e:
        return await api_error_handler(request, e)

    except HTTPException as e:
        request_id = request.headers.get("X-Request-ID")
        logger.warning("HTTP %s on %s: %s", e.status_code, request.url.path, e.detail, extra={"request_id": request_id})
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        request_id = request.headers.get("X-Request-ID")
        logger.error(
            "Unhandled exception on %s %s: %s\n%s",
            request.method,
            request.url.path,
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
        )
