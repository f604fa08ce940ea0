# ruff: noqa: D107
"""Chat turn exceptions.

Every exception carries one of the ``TurnErrorKind`` codes so the HTTP layer
and the stream layer report the same taxonomy.
"""

from enum import Enum
from typing import Any

from .base import BaseAppException, ConflictError, NotFoundError, ValidationError


class TurnErrorKind(str, Enum):
    """Error taxonomy surfaced by a chat turn."""

    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"
    PERSISTENCE_FAILURE = "PERSISTENCE_FAILURE"


class InvalidTurnInputError(ValidationError):
    """Raised when a turn request is malformed (e.g. trailing non-user message)."""

    def __init__(
        self,
        message: str = "Invalid message format",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, error_code=TurnErrorKind.INVALID_INPUT.value, details=details)


class ChatNotFoundError(NotFoundError):
    """Raised when a chat does not exist or does not belong to the user."""

    def __init__(
        self,
        message: str = "Chat not found or access denied",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, details=details)


class TurnConflictError(ConflictError):
    """Raised when a turn is already in flight for the chat."""

    def __init__(
        self,
        message: str = "A response is already being generated for this chat",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, details=details)


class UpstreamFailureError(BaseAppException):
    """Raised when the condenser, retriever or generator fails."""

    def __init__(
        self,
        message: str = "Upstream service failure",
        error_code: str = TurnErrorKind.UPSTREAM_FAILURE.value,
        status_code: int = 502,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, status_code=status_code, error_code=error_code, details=details)


class PersistenceFailureError(BaseAppException):
    """Raised when chat history cannot be written."""

    def __init__(
        self,
        message: str = "Failed to persist chat history",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            error_code=TurnErrorKind.PERSISTENCE_FAILURE.value,
            details=details,
        )


class InvalidTurnTransitionError(BaseAppException):
    """Raised when a turn is moved to a state its current state cannot reach."""

    def __init__(self, current: str, target: str):
        super().__init__(
            message=f"Illegal turn transition {current} -> {target}",
            status_code=500,
            error_code="INVALID_TURN_TRANSITION",
            details={"from": current, "to": target},
        )
