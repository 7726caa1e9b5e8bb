"""Rejects request bodies above the configured size before they are read."""

import logging
from typing import Callable

from fastapi import Request, Response, status

from src.api.middleware.error_handler import create_error_response
from src.core.config import get_settings

logger = logging.getLogger(__name__)


async def request_size_limit_middleware(
    request: Request,
    call_next: Callable[[Request], Response],
) -> Response:
    """Check the declared Content-Length against ``max_request_body_size``.

    Carts and webhook events are small; anything larger is answered 413
    without reading the body. A Content-Length that is not a number is 400.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: The route's response, or the rejection.
    """
    declared = request.headers.get("content-length")
    if declared is None:
        return await call_next(request)

    request_id = request.headers.get("X-Request-ID")
    if not declared.isdigit():
        return create_error_response(
            error_type="validation_error",
            message="Invalid Content-Length header",
            status_code=status.HTTP_400_BAD_REQUEST,
            request_id=request_id,
        )

    max_size = get_settings().max_request_body_size
    if int(declared) > max_size:
        logger.warning("Rejected %s byte body on %s (max %d)", declared, request.url.path, max_size)
        return create_error_response(
            error_type="request_too_large",
            message=f"Request body exceeds maximum size of {max_size} bytes",
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            request_id=request_id,
        )

    return await call_next(request)
