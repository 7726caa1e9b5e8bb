"""Liveness and readiness checks."""

import time

from fastapi import APIRouter, Response, status

from src.core.config import get_settings
from src.core.supabase import check_database_connection
from src.schemas.common import CheckResult, HealthResponse, HealthStatus, ReadinessResponse
from src.services.notification_dispatcher import get_notification_dispatcher

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness check",
    description="Answers 200 while the process serves requests. Checks no dependencies.",
)
async def health_check() -> HealthResponse:
    """Return liveness status."""
    return HealthResponse(status=HealthStatus.HEALTHY)


async def _database_check() -> CheckResult:
    start_time = time.perf_counter()
    result = await check_database_connection()
    return CheckResult(
        name="database",
        healthy=result["healthy"],
        latency_ms=round((time.perf_counter() - start_time) * 1000, 2),
        error=result.get("error"),
    )


def _payment_gateway_check() -> CheckResult:
    settings = get_settings()
    missing = [
        name
        for name, value in (
            ("STRIPE_SECRET_KEY", settings.stripe_secret_key),
            ("STRIPE_WEBHOOK_SECRET", settings.stripe_webhook_secret),
        )
        if not value
    ]
    return CheckResult(
        name="payment_gateway",
        healthy=not missing,
        error=f"Not configured: {', '.join(missing)}" if missing else None,
    )


def _notifications_check() -> CheckResult:
    running = get_notification_dispatcher().is_running
    return CheckResult(
        name="notifications",
        healthy=running,
        error=None if running else "Notification worker is not running",
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    responses={
        200: {"description": "Ready to take orders and webhooks"},
        503: {"description": "A dependency is unavailable"},
    },
    summary="Readiness check",
    description="Checks the database, the Stripe configuration and the notification worker.",
)
async def readiness_check(response: Response) -> ReadinessResponse:
    """Report whether orders and webhooks can be processed.

    Args:
        response: Used to switch the status code to 503.

    Returns:
        ReadinessResponse: Per-dependency results.
    """
    checks = [await _database_check(), _payment_gateway_check(), _notifications_check()]

    ready = all(check.healthy for check in checks)
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status=HealthStatus.HEALTHY if ready else HealthStatus.UNHEALTHY,
        checks=checks,
    )
