"""
Exception classes for the project engine.

All exceptions inherit from ProjectEngineError and carry a code, a message
and optional details. They are raised by stores and model mutators and are
caught at the public engine boundary, where they become log entries and
failure values.
"""

from typing import Optional


class ProjectEngineError(Exception):
    """Base exception for all project engine errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class PersistenceError(ProjectEngineError):
    """Raised when the key-value store cannot be read or written."""

    pass


class TamperingError(PersistenceError):
    """Raised when HMAC validation of the state file fails."""

    pass


class InvalidTransitionError(ProjectEngineError):
    """Raised when a candidate status change is not allowed."""

    pass


class NotificationError(ProjectEngineError):
    """Raised by notification channels that cannot deliver."""

    pass


class ConfigurationError(ProjectEngineError):
    """Raised when configuration values are missing or malformed."""

    pass
