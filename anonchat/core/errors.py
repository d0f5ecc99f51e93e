"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    code: str
    message: str
    hint: str
    limit: int
    remaining: int
    reset_at: int
    retry_after: float
    window: str
    scope: str
    message_count: int
    daily_message_limit: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class SessionNotFoundError(AppError):
    """Raised when a session id does not resolve to a live session.

    Client-correctable: the client should bootstrap a new session.
    """


class RateLimitExceededError(AppError):
    """Raised when a sliding-window check rejects the request.

    Transient: retryable once ``details["retry_after"]`` seconds have passed.
    """


class QuotaExceededError(AppError):
    """Raised when a session has used its whole daily message allowance.

    Terminal for the current quota period.
    """


class StoreUnavailableError(AppError):
    """Raised when the shared store cannot be reached or errors out."""
