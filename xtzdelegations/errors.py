"""Application error types and helpers for classifying them."""

from __future__ import annotations

from collections.abc import Iterator


class AppError(Exception):
    """Base class for errors raised by the delegation service."""

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause
        self.__cause__ = cause


class ValidationError(AppError):
    """An input value failed validation."""

    def __init__(
        self, field: str, message: str, cause: BaseException | None = None
    ) -> None:
        super().__init__(message, cause)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"validation error for field '{self.field}': {self.message}"
        return f"validation error: {self.message}"


class DatabaseError(AppError):
    """A database operation failed."""

    def __init__(
        self, operation: str, message: str, cause: BaseException | None = None
    ) -> None:
        super().__init__(message, cause)
        self.operation = operation

    def __str__(self) -> str:
        if self.operation:
            return f"database error during {self.operation}: {self.message}"
        return f"database error: {self.message}"


class ExternalAPIError(AppError):
    """A call to an external API failed."""

    def __init__(
        self,
        service: str,
        operation: str,
        message: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause)
        self.service = service
        self.operation = operation

    def __str__(self) -> str:
        if self.service and self.operation:
            return (
                f"external API error ({self.service} {self.operation}): "
                f"{self.message}"
            )
        return f"external API error: {self.message}"


def _chain(err: BaseException | None) -> Iterator[BaseException]:
    """Yield an exception and every exception it was raised from or during."""
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        if err.__cause__ is not None:
            err = err.__cause__
        elif not err.__suppress_context__:
            err = err.__context__
        else:
            err = None


def is_validation_error(err: BaseException | None) -> bool:
    """Return True if a ValidationError is anywhere in the error's chain."""
    return any(isinstance(e, ValidationError) for e in _chain(err))


def is_database_error(err: BaseException | None) -> bool:
    """Return True if a DatabaseError is anywhere in the error's chain."""
    return any(isinstance(e, DatabaseError) for e in _chain(err))


def is_external_api_error(err: BaseException | None) -> bool:
    """Return True if an ExternalAPIError is anywhere in the error's chain."""
    return any(isinstance(e, ExternalAPIError) for e in _chain(err))