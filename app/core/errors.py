"""
Scheduling error taxonomy.

Every error raised by the availability and routing engine derives from
SchedulingError so the HTTP layer can map it to a status code in one place.
"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for engine errors."""

    status_code: int = 500
    error_code: str = "scheduling_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert to API error payload."""
        result = {"error": self.error_code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(SchedulingError):
    """Malformed date, time, coordinates or duration."""

    status_code = 400
    error_code = "validation_error"


class NotFoundError(SchedulingError):
    """Unknown provider, service, booking, route or stop."""

    status_code = 404
    error_code = "not_found"


class ConflictError(SchedulingError):
    """Invalid state transition or write-time overlap."""

    status_code = 409
    error_code = "conflict"


class UpstreamDegradedError(SchedulingError):
    """Routing provider unavailable, slow or returning garbage.

    Never fatal inside the engine: availability converts it to a
    fail-closed slot, sequencing converts it to a haversine estimate.
    """

    status_code = 503
    error_code = "upstream_degraded"
