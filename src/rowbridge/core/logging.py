"""Structured logging infrastructure.

This module provides logging that works for:
- Local development (rich console output)
- Deployed services (JSON structured logs)

Usage:
    from rowbridge.core.logging import get_logger, configure_logging

    # Configure at startup
    configure_logging(log_level="INFO", log_format="console")

    # Get logger in any module
    logger = get_logger(__name__)

    # Log with structured context
    logger.info("batch_submitted", table="customers", rows=100)

    # Scope context for a block of work
    with log_context(connector="sql", table="customers"):
        logger.info("bulk_load_started")
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

import structlog
from structlog.typing import FilteringBoundLogger

# Context variables for correlation
_run_context: ContextVar[dict[str, Any] | None] = ContextVar("run_context", default=None)


@dataclass
class OperationMetrics:
    """Counters collected while a connector operation runs."""

    operation: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    rows_read: int = 0
    rows_written: int = 0
    batches_submitted: int = 0
    statements_executed: int = 0
    pages_fetched: int = 0
    retries: int = 0

    # Sub-operation timings (seconds)
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> float:
        """Get duration in seconds."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return (datetime.now(UTC) - self.start_time).total_seconds()

    def record_timing(self, operation: str, seconds: float) -> None:
        """Record timing for a sub-operation."""
        self.timings[operation] = self.timings.get(operation, 0.0) + seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "operation": self.operation,
            "duration_seconds": self.duration_seconds,
            "rows_read": self.rows_read,
            "rows_written": self.rows_written,
            "batches_submitted": self.batches_submitted,
            "statements_executed": self.statements_executed,
            "pages_fetched": self.pages_fetched,
            "retries": self.retries,
            "timings": self.timings,
        }


_current_metrics: ContextVar[OperationMetrics | None] = ContextVar(
    "current_operation_metrics", default=None
)


def start_operation_metrics(operation: str) -> OperationMetrics:
    """Start collecting metrics for an operation."""
    metrics = OperationMetrics(operation=operation)
    _current_metrics.set(metrics)
    return metrics


def get_operation_metrics() -> OperationMetrics | None:
    """Get current operation metrics."""
    return _current_metrics.get()


def end_operation_metrics() -> OperationMetrics | None:
    """End operation metrics collection."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.end_time = datetime.now(UTC)
        _current_metrics.set(None)
    return metrics


def _add_run_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add run context to log events."""
    context = _run_context.get()
    if context:
        event_dict.update(context)
    return event_dict


def _add_metrics_context(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Processor to add the current operation name."""
    metrics = _current_metrics.get()
    if metrics:
        event_dict["_operation"] = metrics.operation
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    log_format: str = "console",
    show_timestamps: bool = True,
    color: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Output format ("console" for development, "json" for production)
        show_timestamps: Whether to show timestamps in console mode
        color: Whether to use colors in console mode
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_run_context,
        _add_metrics_context,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if show_timestamps:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(
                colors=color,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Route SQLAlchemy / azure-core logging through stderr as well
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> FilteringBoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return cast(FilteringBoundLogger, structlog.get_logger(name))


class LogContext:
    """Context manager for adding context to logs within a scope."""

    def __init__(self, **context: Any):
        self.context = context
        self.token: Any = None

    def __enter__(self) -> LogContext:
        current = _run_context.get() or {}
        self.token = _run_context.set({**current, **self.context})
        return self

    def __exit__(self, *args: Any) -> None:
        if self.token:
            _run_context.reset(self.token)


def log_context(**context: Any) -> LogContext:
    """Create a context manager for scoped logging context.

    Usage:
        with log_context(connector="tablestore", table="orders"):
            logger.info("truncating")  # Will include connector and table
    """
    return LogContext(**context)


def record_rows_read(count: int) -> None:
    """Add to the rows-read counter of the current operation."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.rows_read += count


def record_rows_written(count: int) -> None:
    """Add to the rows-written counter of the current operation."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.rows_written += count


def increment_statement() -> None:
    metrics = _current_metrics.get()
    if metrics:
        metrics.statements_executed += 1


def increment_batch() -> None:
    metrics = _current_metrics.get()
    if metrics:
        metrics.batches_submitted += 1


def increment_page() -> None:
    metrics = _current_metrics.get()
    if metrics:
        metrics.pages_fetched += 1


def increment_retry() -> None:
    metrics = _current_metrics.get()
    if metrics:
        metrics.retries += 1


def record_operation_timing(operation: str, seconds: float) -> None:
    """Record timing for a sub-operation in the current metrics."""
    metrics = _current_metrics.get()
    if metrics:
        metrics.record_timing(operation, seconds)


# Initialize with default configuration
configure_logging()
