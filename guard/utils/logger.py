"""Structured logging utilities for context-guard.

Operational logging only. Security decisions go to the audit log
(``guard.audit.log``), never through here. Nothing logged here may contain a
raw secret or quarantined content.
"""

import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Iterator, Optional, TextIO

import structlog
from structlog.types import EventDict, Processor

from guard.constants import SLOW_OPERATION_MS

# Correlates every log line emitted while one guard operation is in flight
operation_id_var: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)


def add_operation_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add operation_id to log context if available."""
    operation_id = operation_id_var.get()
    if operation_id:
        event_dict["operation_id"] = operation_id
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """Configure structured logging for the guard.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines if True, plain console lines otherwise.
        stream: Destination; defaults to stderr so that CLI results on
            stdout stay machine-readable.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_operation_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        # Reconfigured by the CLI after module-level loggers exist
        cache_logger_on_first_use=False,
    )


def get_logger(name: str = "guard") -> structlog.stdlib.BoundLogger:
    """Get a structlog logger, typically named after the calling module."""
    return structlog.get_logger(name)


@contextmanager
def operation_context(operation_id: str) -> Iterator[str]:
    """Tag every log line inside the block with ``operation_id``."""
    token = operation_id_var.set(operation_id)
    try:
        yield operation_id
    finally:
        operation_id_var.reset(token)


class PerformanceLogger:
    """Context manager that logs the latency of one guard operation.

    Completion is logged at DEBUG, or at WARNING past ``slow_ms``: guard checks
    sit in front of every file and command action.
    """

    def __init__(
        self,
        operation: str,
        logger: Optional[structlog.stdlib.BoundLogger] = None,
        slow_ms: float = SLOW_OPERATION_MS,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.slow_ms = slow_ms
        self.start_time: float = 0
        self.duration_ms: Optional[float] = None

    def __enter__(self) -> "PerformanceLogger":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.duration_ms = round((time.perf_counter() - self.start_time) * 1000, 3)
        if exc_type is not None:
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=self.duration_ms,
                error_type=exc_type.__name__,
            )
            return
        log_method = self.logger.warning if self.duration_ms > self.slow_ms else self.logger.debug
        log_method(
            f"{self.operation} completed",
            operation=self.operation,
            duration_ms=self.duration_ms,
        )


# Sensible defaults; the CLI reconfigures from its flags
configure_logging()
