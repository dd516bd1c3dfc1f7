"""Base models and types used across all modules.

This module contains the outcome type every connector operation returns.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field


class ErrorKind(str, Enum):
    """Failure categories callers can branch on."""

    VALIDATION = "validation"  # Bad names, unsupported type/operator, rejected before I/O
    CONVERSION = "conversion"  # try_parse / compare failures
    NOT_FOUND = "not_found"
    CONSTRAINT = "constraint"  # e.g. table already exists
    TRANSIENT = "transient"  # Bounded retries exhausted
    UNREACHABLE = "unreachable"  # Backend down, or connector broken/closed
    CANCELLED = "cancelled"
    UNSUPPORTED = "unsupported"  # Operation not offered by this backend
    UNEXPECTED = "unexpected"


T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """Result type for operations that can fail.

    Use this instead of exceptions for expected failures.
    Exceptions are reserved for unexpected/programming errors.

    Cancellation is a distinct outcome: ``success`` is False, ``kind`` is
    ``ErrorKind.CANCELLED`` and ``rows_affected`` carries the partial progress.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    value: T | None = None
    error: str | None = None
    kind: ErrorKind | None = None
    rows_affected: int | None = None
    statement: str | None = None
    cause: BaseException | None = Field(default=None, exclude=True, repr=False)
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def ok(
        cls,
        value: T,
        rows_affected: int | None = None,
        warnings: list[str] | None = None,
    ) -> Result[T]:
        """Create a successful result."""
        return cls(
            success=True,
            value=value,
            rows_affected=rows_affected,
            warnings=warnings or [],
        )

    @classmethod
    def fail(
        cls,
        error: str,
        kind: ErrorKind = ErrorKind.UNEXPECTED,
        cause: BaseException | None = None,
        statement: str | None = None,
        rows_affected: int | None = None,
    ) -> Result[T]:
        """Create a failed result."""
        return cls(
            success=False,
            error=error,
            kind=kind,
            cause=cause,
            statement=statement,
            rows_affected=rows_affected,
        )

    @classmethod
    def cancelled(cls, message: str = "Operation cancelled", rows_affected: int = 0) -> Result[T]:
        """Create a cancelled result reporting the progress made so far."""
        return cls(
            success=False,
            error=message,
            kind=ErrorKind.CANCELLED,
            rows_affected=rows_affected,
        )

    @property
    def is_cancelled(self) -> bool:
        """Whether the operation stopped because of a cancellation request."""
        return self.kind == ErrorKind.CANCELLED

    def unwrap(self) -> T:
        """Get the value or raise if failed."""
        if not self.success:
            raise ValueError(f"Result failed: {self.error}")
        return self.value  # type: ignore[return-value]

    def map(self, fn: Callable[[T], Any]) -> Result[Any]:
        """Transform the value if successful."""
        if self.success and self.value is not None:
            return Result.ok(fn(self.value), self.rows_affected, self.warnings)
        return self

    def propagate(self) -> Result[Any]:
        """Re-type a failed result so it can be returned from another operation."""
        return Result.fail(
            self.error or "Unknown error",
            kind=self.kind or ErrorKind.UNEXPECTED,
            cause=self.cause,
            statement=self.statement,
            rows_affected=self.rows_affected,
        )
