"""Domain level exceptions and helpers shared by repositories and workers."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import exc as sa_exc

from .domain.models import GenerationErrorCode

__all__ = [
    "AppError",
    "RepositoryError",
    "NotFoundError",
    "DatabaseOperationError",
    "InvalidTransitionError",
    "ProviderError",
    "UnsupportedFeatureError",
    "MaterializationError",
    "CredentialError",
    "handle_sqlalchemy_errors",
]


class AppError(Exception):
    """Base class for application specific errors."""


class RepositoryError(AppError):
    """Base class for persistence layer failures."""


class NotFoundError(RepositoryError):
    """Raised when a record could not be located."""


class DatabaseOperationError(RepositoryError):
    """Raised for unexpected database errors."""


class InvalidTransitionError(AppError):
    """Raised when a generation is asked to leave a terminal state."""


class ProviderError(AppError):
    """Single error type surfaced by provider drivers.

    ``str(exc)`` is the provider's best-effort message and is what the error
    classifier sees. ``code`` is set only when the driver knows the category
    for certain.
    """

    def __init__(self, message: str, *, code: GenerationErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class UnsupportedFeatureError(ProviderError):
    """Raised before any network call when a driver cannot serve a request."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=GenerationErrorCode.UNSUPPORTED_FEATURE)


class MaterializationError(AppError):
    """Raised when a provider result cannot be turned into a stored file."""

    def __init__(self, message: str, *, code: GenerationErrorCode) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class CredentialError(AppError):
    """Raised when an encrypted provider key cannot be decrypted."""


@contextmanager
def handle_sqlalchemy_errors(*, entity: str | None = None) -> Iterator[None]:
    """Translate SQLAlchemy errors into domain specific ones."""

    try:
        yield
    except sa_exc.DBAPIError as exc:
        prefix = f"{entity}: " if entity else ""
        raise DatabaseOperationError(f"{prefix}database operation failed") from exc
