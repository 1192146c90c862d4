"""Custom exception classes for clock errors.

Provides structured error handling with error codes and user-facing messages.
HTTP routes and the WebSocket handler both render ``ClockError.to_dict()``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for clock errors."""

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"

    # Tournament errors
    TOURNAMENT_NOT_FOUND = "TOURNAMENT_NOT_FOUND"
    TOURNAMENT_NOT_ACTIVE = "TOURNAMENT_NOT_ACTIVE"

    # Clock errors
    CLOCK_NOT_INITIALIZED = "CLOCK_NOT_INITIALIZED"
    WRITE_CONFLICT = "WRITE_CONFLICT"
    INVALID_COMMAND = "INVALID_COMMAND"

    # Infrastructure errors
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class ClockError(Exception):
    """Base exception for clock-related errors.

    Attributes:
        code: Error code for programmatic handling
        message: User-facing error message
        details: Additional error details
        status_code: HTTP status used by the API layer
    """

    status_code: int = 500

    def __init__(
        self,
        code: ErrorCode | str,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "errorCode": self.code,
            "errorMessage": self.message,
            "details": self.details,
        }


class ConfigurationError(ClockError):
    """Raised when a tournament's level schedule cannot be used."""

    status_code = 422

    def __init__(self, message: str = "Invalid level schedule", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message, details)


class StoreUnavailableError(ClockError):
    """Raised when the clock store cannot be read or written."""

    status_code = 503

    def __init__(self, message: str = "Clock store unavailable", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.STORE_UNAVAILABLE, message, details)


class AuthenticationRequiredError(ClockError):
    """Raised when a command arrives without a verified identity."""

    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(ErrorCode.UNAUTHORIZED, message)


class UnauthorizedError(ClockError):
    """Raised when a non-admin viewer issues a clock command."""

    status_code = 403

    def __init__(self, message: str = "Admin privileges required"):
        super().__init__(ErrorCode.FORBIDDEN, message)


class TournamentNotFoundError(ClockError):
    status_code = 404

    def __init__(self, tournament_id: str):
        super().__init__(
            ErrorCode.TOURNAMENT_NOT_FOUND,
            "Tournament not found",
            {"tournament_id": tournament_id},
        )


class ClockNotFoundError(ClockError):
    """Raised when a tournament has no clock row yet."""

    status_code = 404

    def __init__(self, tournament_id: str):
        super().__init__(
            ErrorCode.CLOCK_NOT_INITIALIZED,
            "Clock not initialized",
            {"tournament_id": tournament_id},
        )


class TournamentNotActiveError(ClockError):
    status_code = 400

    def __init__(self, tournament_id: str, status: str):
        super().__init__(
            ErrorCode.TOURNAMENT_NOT_ACTIVE,
            "Tournament is not active",
            {"tournament_id": tournament_id, "status": status},
        )


class WriteConflictError(ClockError):
    """Raised when a newer snapshot kept winning every write attempt."""

    status_code = 409

    def __init__(self, tournament_id: str, attempts: int):
        super().__init__(
            ErrorCode.WRITE_CONFLICT,
            "Clock was updated concurrently, please retry",
            {"tournament_id": tournament_id, "attempts": attempts},
        )


class InvalidCommandError(ClockError):
    status_code = 400

    def __init__(self, message: str = "Invalid command", details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.INVALID_COMMAND, message, details)
