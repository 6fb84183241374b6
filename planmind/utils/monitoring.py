"""Logging and timing helpers built on Loguru.

Key features:
- Console and rotating file sinks
- Error logging with redacted context (no raw user text in logs)
- Lightweight performance timing via a context manager
"""

from __future__ import annotations

import hashlib
import sys
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from loguru import logger

# Context keys whose string values are safe to log verbatim.
_SAFE_KEYS = frozenset(
    {"operation", "error_type", "error_fingerprint", "thread_id", "capability"}
)


def setup_logging(log_level: str = "INFO", log_file: str | None = None) -> None:
    """Configure Loguru sinks.

    Args:
        log_level: Logging level (e.g., "DEBUG", "INFO", "WARNING", "ERROR").
        log_file: Optional log file path for file output.
    """
    # Remove default handler
    logger.remove()

    logger.add(
        sys.stderr,
        level=log_level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        ),
        colorize=True,
    )

    if log_file:
        logger.add(
            log_file,
            level=log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
            "{name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="7 days",
            compression="gz",
        )

    logger.info("Logging configured: level={}, file={}", log_level, log_file)


def fingerprint(value: str) -> str:
    """Return a short stable fingerprint for a string that must not be logged."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def log_error_with_context(
    error: BaseException,
    operation: str,
    context: dict[str, Any] | None = None,
    **kwargs: Any,
) -> None:
    """Log errors with context information.

    Free-text string values are replaced by fingerprints so client data and
    raw model output never reach the log sinks.

    Args:
        error: The exception that was raised
        operation: Name of the operation that failed
        context: Optional context dictionary
        **kwargs: Additional context as keyword arguments
    """
    error_context: dict[str, Any] = {
        "operation": operation,
        "error_type": type(error).__name__,
        "error_fingerprint": fingerprint(str(error)),
    }
    if context:
        error_context.update(context)
    if kwargs:
        error_context.update(kwargs)

    safe_context = {}
    for key, value in error_context.items():
        if key in _SAFE_KEYS or not isinstance(value, str):
            safe_context[key] = value
        else:
            safe_context[key] = f"[redacted:{fingerprint(value)}]"
    logger.error("Operation failed {}", safe_context)


@contextmanager
def performance_timer(operation: str, **context: Any) -> Generator[dict[str, Any]]:
    """Context manager for timing operations.

    Args:
        operation: Name of the operation being timed.
        **context: Additional context to log alongside metrics.

    Yields:
        Dict[str, Any]: Mutable metrics mapping; ``duration_ms`` is set on exit.
    """
    start_time = time.perf_counter()
    metrics: dict[str, Any] = {"operation": operation, **context}
    try:
        yield metrics
    finally:
        metrics["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 1)
        logger.debug("Performance metrics {}", metrics)


__all__ = [
    "fingerprint",
    "log_error_with_context",
    "performance_timer",
    "setup_logging",
]
