"""Schemas and types shared by every router."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# Decimal internally, plain JSON number on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]

# Storefront bodies are camelCase; services populate by field name
CAMEL_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    """Outcome of one health check."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Liveness check body."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=utcnow)
    version: str = "0.1.0"


class CheckResult(BaseModel):
    """Outcome of one readiness dependency check."""

    name: str = Field(description="database, payment_gateway or notifications")
    healthy: bool
    latency_ms: float | None = Field(default=None, description="Time the check took")
    error: str | None = Field(default=None, description="Why the check failed")


class ReadinessResponse(BaseModel):
    """Readiness check body; unhealthy when any check fails."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=utcnow)
    checks: list[CheckResult] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """One entry of ``ErrorResponse.details``."""

    model_config = ConfigDict(from_attributes=True)

    loc: list[str] | None = None
    msg: str
    type: str


class ErrorResponse(BaseModel):
    """Body of every error answer.

    ``error`` is the machine-readable type (``not_found``,
    ``coupon_belowMinimum``, ``invalid_signature``...), ``message`` the
    human-readable one.
    """

    error: str
    message: str
    details: list[ErrorDetail] | None = None
    request_id: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_exception(
        cls,
        error_type: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
    ) -> "ErrorResponse":
        """Build the body from an error's parts.

        Args:
            error_type: Machine-readable error type.
            message: Human-readable error description.
            details: Raw detail dicts with ``msg``/``type``/``loc`` keys.
            request_id: Echo of the caller's X-Request-ID.

        Returns:
            ErrorResponse: The response body.
        """
        parsed = None
        if details:
            parsed = [
                ErrorDetail(loc=d.get("loc"), msg=d.get("msg", str(d)), type=d.get("type", "error"))
                for d in details
            ]
        return cls(error=error_type, message=message, details=parsed, request_id=request_id)
