"""Per-request access log with latency."""

import logging
import time
from typing import Callable

from fastapi import Request, Response

logger = logging.getLogger(__name__)

# Latency thresholds (milliseconds)
SLOW_REQUEST_THRESHOLD_MS = 1000
VERY_SLOW_REQUEST_THRESHOLD_MS = 3000

HEALTH_PATHS = ("/health", "/health/ready")
WEBHOOK_PATH_SUFFIX = "/stripe-webhook"


def _log_level(path: str, status_code: int, latency_ms: float, failed: bool) -> int:
    """Pick the level a request is logged at.

    Health checks are debug noise. Any non-2xx webhook answer makes Stripe
    redeliver, so those are errors like server failures are.
    """
    if path in HEALTH_PATHS:
        return logging.DEBUG
    if failed or status_code >= 500 or latency_ms > VERY_SLOW_REQUEST_THRESHOLD_MS:
        return logging.ERROR
    if path.endswith(WEBHOOK_PATH_SUFFIX) and status_code >= 300:
        return logging.ERROR
    if status_code >= 400 or latency_ms > SLOW_REQUEST_THRESHOLD_MS:
        return logging.WARNING
    return logging.INFO


async def latency_logging_middleware(request: Request, call_next: Callable) -> Response:
    """Log method, path, status and latency of every request.

    Args:
        request: The incoming request.
        call_next: The next middleware/handler in the chain.

    Returns:
        Response: The response from the handler.
    """
    start_time = time.perf_counter()
    response = None
    failed = False

    try:
        response = await call_next(request)
        return response
    except Exception:
        failed = True
        raise
    finally:
        latency_ms = (time.perf_counter() - start_time) * 1000
        status_code = response.status_code if response else 500
        path = request.url.path
        slow = " SLOW" if latency_ms > SLOW_REQUEST_THRESHOLD_MS else ""

        logger.log(
            _log_level(path, status_code, latency_ms, failed),
            "%s %s - %d - %.2fms%s",
            request.method,
            path,
            status_code,
            latency_ms,
            slow,
            extra={
                "status_code": status_code,
                "latency_ms": round(latency_ms, 2),
                "request_id": request.headers.get("X-Request-ID"),
            },
        )
