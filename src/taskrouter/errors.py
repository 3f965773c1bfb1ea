"""Exception hierarchy for the routing engine.

Capacity exhaustion is deliberately absent: a full pool produces a deferred
Assignment, not an exception.
"""

from __future__ import annotations

from typing import Any


class RoutingError(Exception):
    """Base class for all routing engine errors.

    Attributes:
        message: Human-readable error message
        error_code: Short machine-readable code
        details: Additional context for logs and API payloads
    """

    error_code = "ROUTING-Error"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message, "code": self.error_code, "details": self.details}


class InvalidInputError(RoutingError):
    """A task or outcome is missing required fields."""

    error_code = "ROUTING-InvalidInput"


class ConfigurationError(RoutingError):
    """Configuration values are out of range or inconsistent."""

    error_code = "ROUTING-InvalidConfiguration"


class ModelCorruptionError(RoutingError):
    """A recalibrated model failed its integrity check and was not published."""

    error_code = "ROUTING-ModelCorruption"


class InsufficientDataError(RoutingError):
    """Too few outcomes were recorded to recalibrate the model."""

    error_code = "ROUTING-InsufficientData"


class ConcurrencyViolationError(RoutingError):
    """Workload counters were touched outside the exclusive section."""

    error_code = "ROUTING-ConcurrencyViolation"
