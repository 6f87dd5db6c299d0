"""Core application utilities.

The service container and FastAPI dependencies live in ``core.container``
and ``core.dependencies``; they import the services and are not
re-exported here.
"""

from .config import Settings, get_settings, validate_settings
from .database import build_engine, build_session_factory, close_db, init_db, session_scope
from .errors import (
    AuthenticationError,
    ConcurrencyError,
    ConfigurationError,
    DuplicateFieldError,
    NotFoundError,
    StateTransitionError,
    StorageError,
    TrackerError,
    ValidationError,
)
from .security import (
    TokenPayload,
    create_access_token,
    decode_token,
    deserialize_user,
    serialize_user,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "validate_settings",
    # Database
    "build_engine",
    "build_session_factory",
    "session_scope",
    "init_db",
    "close_db",
    # Errors
    "TrackerError",
    "ValidationError",
    "DuplicateFieldError",
    "NotFoundError",
    "StateTransitionError",
    "ConcurrencyError",
    "StorageError",
    "ConfigurationError",
    "AuthenticationError",
    # Security
    "TokenPayload",
    "create_access_token",
    "decode_token",
    "serialize_user",
    "deserialize_user",
]
