"""ContentFlow exception hierarchy."""

from __future__ import annotations

from contentflow.error_codes import ErrorCode


class ContentFlowError(Exception):
    """Base error for ContentFlow."""


class ConfigurationError(ContentFlowError):
    """Raised when configuration or inputs are invalid."""


class RepositoryError(ContentFlowError):
    """Base error for typed data-access failures."""

    default_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        entity: str,
        message: str,
        *,
        entity_id: str | None = None,
        error_code: ErrorCode | str | None = None,
    ) -> None:
        prefix = f"{entity}"
        if entity_id:
            prefix = f"{prefix} (id={entity_id})"
        super().__init__(f"{prefix}: {message}")
        self.entity = entity
        self.entity_id = entity_id
        self.message = message
        self.error_code = error_code or self.default_code


class ValidationError(RepositoryError):
    """Raised when input data is malformed or incomplete."""

    default_code = ErrorCode.VALIDATION_FAILED


class NotFoundError(RepositoryError):
    """Raised when a referenced record does not exist."""

    default_code = ErrorCode.NOT_FOUND


class ConflictError(RepositoryError):
    """Raised on a uniqueness or state conflict."""

    default_code = ErrorCode.CONFLICT


class ForeignKeyError(RepositoryError):
    """Raised when a foreign key points at a missing record."""

    default_code = ErrorCode.FOREIGN_KEY_VIOLATION


class InvalidStateError(RepositoryError):
    """Raised on an illegal status transition."""

    default_code = ErrorCode.INVALID_STATE


class MigrationError(ContentFlowError):
    """Raised when migrations are missing or an applied one was edited."""
