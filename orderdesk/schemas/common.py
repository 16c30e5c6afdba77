"""Health probe and error envelope models shared across routes."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthResponse(BaseModel):
    """Body of GET /health."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    version: str = Field(default="0.1.0", description="Service version")


class CheckResult(BaseModel):
    """Outcome of one readiness dependency check."""

    name: str = Field(description="Dependency name, e.g. database")
    healthy: bool
    latency_ms: float | None = Field(default=None, description="Round trip of the check")
    error: str | None = None


class ReadinessResponse(BaseModel):
    """Body of GET /health/ready: unhealthy if any check failed."""

    status: HealthStatus
    timestamp: datetime = Field(default_factory=_utcnow)
    checks: list[CheckResult] = Field(default_factory=list)


class ErrorDetail(BaseModel):
    """Field or reference attached to an error, e.g. the order an error is about."""

    loc: list[str] | None = Field(default=None, description="Path of the offending field")
    msg: str
    type: str = "error"


class ErrorResponse(BaseModel):
    """JSON envelope for every non-2xx answer."""

    error: str = Field(description="Machine-readable error type, e.g. validation_error")
    message: str
    details: list[ErrorDetail] | None = None
    request_id: str | None = Field(default=None, description="Echo of the X-Request-ID header")
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def build(
        cls,
        error_type: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        request_id: str | None = None,
    ) -> "ErrorResponse":
        entries = [
            ErrorDetail(loc=entry.get("loc"), msg=str(entry.get("msg", "")), type=entry.get("type", "error"))
            for entry in details or []
        ]
        return cls(error=error_type, message=message, details=entries or None, request_id=request_id)
