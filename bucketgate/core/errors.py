"""Application-level exception types.

Every failure the limiter surfaces to callers is an ``AppError`` subclass, so
callers can choose a fail-open or fail-closed policy with a single ``except``
clause and still branch on the stable ``code`` when they need to.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability.

    Fields are optional; only the ones relevant to a given failure are set.
    """

    key: str
    attempts: int
    backend: str
    raw_value: str
    field: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for limiter and store failures.

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
    """Raised when caller input fails validation."""


class InvalidConfigurationError(ValidationAppError):
    """Raised eagerly when a limiter or store is constructed with bad settings."""


class StoreUnavailableError(AppError):
    """Raised when the shared state store cannot be reached or times out."""


class ContentionError(AppError):
    """Raised when optimistic-conflict retries are exhausted for one client."""


class CorruptStateError(AppError):
    """Raised when a stored bucket value cannot be decoded."""
