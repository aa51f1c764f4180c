from typing import Any, Optional


class SchedulingError(Exception):
    """Base class for every failure the booking core reports to callers."""

    error_type = "system"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(SchedulingError):
    """User-correctable request problem (bad combination, slot taken, hours)."""

    error_type = "validation"


class ConflictError(SchedulingError):
    """A concurrent booking won the slot between validation and commit."""

    error_type = "conflict"


class NotFoundError(SchedulingError):
    error_type = "not_found"


class StateError(SchedulingError):
    """Status transition not allowed from the reservation's current status."""

    error_type = "state"


class PermissionDeniedError(SchedulingError):
    error_type = "forbidden"


class StorageError(SchedulingError):
    """Storage unavailable or an unexpected failure inside the core."""

    error_type = "system"
