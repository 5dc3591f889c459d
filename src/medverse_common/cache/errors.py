"""Standardized error categories for the cache coordinator.

Clearing is best-effort: individual step failures never surface as exceptions.
Only the errors below cross the public API boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    CONFIRMATION_REQUIRED = "confirmation_required"
    CONFIGURATION = "configuration"
    TRANSIENT = "transient"
    INTERNAL = "internal"


@dataclass
class CacheManagerError(Exception):
    """Base structured error for the cache coordinator."""

    message: str
    category: ErrorCategory = ErrorCategory.INTERNAL
    details: dict | None = None

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.message


class ValidationError(CacheManagerError):
    def __init__(self, message: str, details: dict | None = None) -> None:  # noqa: D401
        super().__init__(message, ErrorCategory.VALIDATION, details)


class ConfirmationRequiredError(CacheManagerError):
    """Raised when a destructive clear is requested without explicit confirmation."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, ErrorCategory.CONFIRMATION_REQUIRED, details)


class ConfigurationError(CacheManagerError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, ErrorCategory.CONFIGURATION, details)


class CacheClearError(CacheManagerError):
    """Raised when every attempted step of a clearing tier failed."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, ErrorCategory.TRANSIENT, details)


def exception_is_transient(exc: Exception) -> bool:
    return isinstance(exc, CacheClearError) or (
        isinstance(exc, CacheManagerError) and exc.category == ErrorCategory.TRANSIENT
    )


TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (CacheClearError,)

__all__ = [
    "CacheClearError",
    "CacheManagerError",
    "ConfigurationError",
    "ConfirmationRequiredError",
    "ErrorCategory",
    "TRANSIENT_EXCEPTIONS",
    "ValidationError",
    "exception_is_transient",
]
