"""Custom exceptions for Fitness Pal.

This module defines application-specific exceptions for better
error handling and debugging.
"""

from typing import Optional, Any


class FitnessPalError(Exception):
    """Base exception for all Fitness Pal errors.

    All custom exceptions in the application should inherit from this class
    to allow for easy catching of application-specific errors.
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        """Initialize the exception.

        Args:
            message: Error message.
            details: Optional dictionary with additional error details.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigurationError(FitnessPalError):
    """Raised when there's an error in configuration.

    This includes invalid YAML syntax, invalid field values,
    or missing required settings.
    """

    pass


class TransportError(FitnessPalError):
    """Raised when the generation backend cannot be reached or read.

    This includes request setup failures, non-success HTTP status codes,
    and failures while reading the streamed response body.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize transport error.

        Args:
            message: Error message.
            status_code: HTTP status code, if a response was received.
            endpoint: Endpoint path that was being called.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.status_code = status_code
        self.endpoint = endpoint


class PersistenceError(FitnessPalError):
    """Raised when a durable store operation fails."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        conversation_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize persistence error.

        Args:
            message: Error message.
            operation: Store operation that failed (append_message, ...).
            conversation_id: Conversation the operation targeted.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.operation = operation
        self.conversation_id = conversation_id


class SessionStateError(FitnessPalError):
    """Raised when a session operation is not valid in its current state.

    This includes resuming a session that is not awaiting feedback,
    restarting a terminal session, or referencing an unknown session id.
    """

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        status: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize session state error.

        Args:
            message: Error message.
            session_id: Session the operation targeted.
            status: Status of the session when the error occurred.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.session_id = session_id
        self.status = status


class ValidationError(FitnessPalError):
    """Raised when caller input fails validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize validation error.

        Args:
            message: Error message.
            field: Field that failed validation.
            value: Value that failed validation.
            details: Additional error details.
        """
        super().__init__(message, details)
        self.field = field
        self.value = value
