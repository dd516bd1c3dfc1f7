"""Exceptions for programming errors and internal control flow.

Expected failures are returned as ``Result.fail(...)``; these exceptions are
raised inside connectors and turned into results at the public boundary.
"""

from __future__ import annotations

from rowbridge.core.models.base import ErrorKind


class RowbridgeError(Exception):
    """Base error carrying the outcome category it maps to."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, statement: str | None = None):
        super().__init__(message)
        self.statement = statement


class ConnectorStateError(RowbridgeError):
    """Raised when an operation is attempted on a broken or closed connector."""

    kind = ErrorKind.UNREACHABLE


class FilterTranslationError(RowbridgeError):
    """Raised when a filter cannot be expressed in the store's query language."""

    kind = ErrorKind.VALIDATION


class ValidationError(RowbridgeError):
    """Raised for invalid identifiers or schema before any I/O happens."""

    kind = ErrorKind.VALIDATION


class ValueConversionError(RowbridgeError):
    """Raised when a value cannot be converted to its column's type."""

    kind = ErrorKind.CONVERSION


class SourceReadError(RowbridgeError):
    """Raised when a bulk load's source stopped on a row it could not read.

    Carries the kind of the source's own failure.
    """

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNEXPECTED):
        super().__init__(message)
        self.kind = kind
