"""Domain error taxonomy shared by every layer.

Managers raise these; the API layer maps them to HTTP responses in
``main.py``. Nothing here knows about FastAPI.
"""

from typing import Any


# =============================================================================
# EXCEPTIONS
# =============================================================================


class TrackerError(Exception):
    """Base exception for compliance tracker operations."""

    code = "tracker_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class ValidationError(TrackerError):
    """Schema or business-rule rejection with per-field detail."""

    code = "validation_error"

    def __init__(self, message: str, field_errors: list[dict] | None = None):
        super().__init__(message)
        self.field_errors = field_errors or []

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, field_errors=[{"field": field, "message": message}])


class DuplicateFieldError(TrackerError):
    """Unique-constraint violation on a single field."""

    code = "duplicate_field"

    def __init__(self, field: str, value: Any, message: str | None = None):
        super().__init__(message or f"Duplicate value for {field}: {value}")
        self.field = field
        self.value = value


class NotFoundError(TrackerError):
    """Referenced entity is absent."""

    code = "not_found"

    def __init__(self, entity: str, identifier: Any):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class StateTransitionError(TrackerError):
    """Illegal status or stage move."""

    code = "invalid_transition"

    def __init__(self, field: str, current: Any, target: Any, entity: str = "record"):
        super().__init__(
            f"Invalid {entity} {field} transition from '{current}' to '{target}'"
        )
        self.field = field
        self.current = current
        self.target = target


class ConcurrencyError(TrackerError):
    """The stored state changed between the read and the conditional write."""

    code = "concurrent_modification"


class StorageError(TrackerError):
    """Underlying store failure."""

    code = "storage_error"


class ConfigurationError(TrackerError):
    """Missing or invalid startup configuration."""

    code = "configuration_error"


class AuthenticationError(TrackerError):
    """Rejected OAuth exchange or session token."""

    code = "authentication_failed"
