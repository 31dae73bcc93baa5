"""
Centralized logging and error classification for the gateway clients.

This module provides helpers to standardize logging and error reporting
patterns across the package:
- Structured logging with contextual information
- Automatic error type detection and classification
- Operation timing
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog

from .llm.exceptions import (
    ConfigurationError,
    LLMError,
    ProtocolError,
    SessionStateError,
    StreamCancelledError,
    StreamingError,
    TransportError,
)

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(colors=True),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def get_logger(name: str, **context: Any) -> Any:
    """Get a structlog logger, optionally bound to ``context``."""
    bound = structlog.get_logger(name)
    return bound.bind(**context) if context else bound


class ErrorClassifier:
    """Maps exceptions onto the categories used in log records."""

    @staticmethod
    def classify_error(error: BaseException) -> str:
        """
        Classify an error for structured logging.

        Args:
            error: The exception to classify

        Returns:
            Error category name
        """
        if isinstance(error, TransportError):
            if error.status_code is not None:
                return "http_status_error"
            return "transport_error"
        if isinstance(error, StreamCancelledError):
            return "cancelled"
        if isinstance(error, ProtocolError):
            return "protocol_error"
        if isinstance(error, StreamingError):
            return "streaming_error"
        if isinstance(error, ConfigurationError | SessionStateError):
            return "configuration_error"
        if isinstance(error, TimeoutError | httpx.TimeoutException):
            return "timeout_error"
        if isinstance(error, ConnectionError | OSError | httpx.TransportError):
            return "connection_error"
        if isinstance(error, LLMError):
            return "llm_error"
        return "unknown_error"

    @staticmethod
    def error_context(error: BaseException) -> dict[str, Any]:
        """Structured fields describing ``error`` for a log record."""
        context: dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_category": ErrorClassifier.classify_error(error),
            "error_message": str(error),
        }
        if isinstance(error, LLMError) and error.status_code is not None:
            context["status_code"] = error.status_code
        return context


@asynccontextmanager
async def operation_context(
    operation: str,
    *,
    context: dict[str, Any] | None = None,
    log_timing: bool = True,
):
    """
    Async context manager for operation logging.

    Args:
        operation: Description of the operation
        context: Additional context for logging
        log_timing: Whether to log operation timing

    Yields:
        Bound logger for the operation
    """
    operation_logger = logger.bind(
        operation=operation,
        **(context or {}),
    )

    operation_logger.info("Operation started")
    start_time = time.perf_counter() if log_timing else None

    try:
        yield operation_logger

        log_data: dict[str, Any] = {}
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            log_data["duration_ms"] = duration

        operation_logger.info("Operation completed successfully", **log_data)

    except Exception as e:
        error_log_data = ErrorClassifier.error_context(e)
        if log_timing and start_time is not None:
            duration = round((time.perf_counter() - start_time) * 1000, 2)
            error_log_data["duration_ms"] = duration

        operation_logger.error("Operation failed", **error_log_data)
        raise
