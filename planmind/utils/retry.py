"""Bounded retry with timeout for external service calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from planmind.config.settings import PlanMindSettings
from planmind.utils.exceptions import TRANSIENT_EXCEPTIONS, TransientServiceError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Timeout and exponential backoff applied to one kind of external call."""

    max_retries: int = Field(default=2, ge=0)
    timeout_seconds: float = Field(default=30.0, gt=0)
    initial_backoff_seconds: float = Field(default=0.5, ge=0)
    max_backoff_seconds: float = Field(default=8.0, ge=0)

    @classmethod
    def for_llm(cls, cfg: PlanMindSettings) -> RetryPolicy:
        return cls(
            max_retries=cfg.llm.max_retries,
            timeout_seconds=cfg.llm.request_timeout_seconds,
            initial_backoff_seconds=cfg.llm.initial_backoff_seconds,
            max_backoff_seconds=cfg.llm.max_backoff_seconds,
        )

    @classmethod
    def for_retrieval(cls, cfg: PlanMindSettings) -> RetryPolicy:
        return cls(
            max_retries=cfg.llm.max_retries,
            timeout_seconds=float(
                max(
                    cfg.embedding.request_timeout_seconds,
                    cfg.vector_store.timeout_seconds,
                )
            ),
            initial_backoff_seconds=cfg.llm.initial_backoff_seconds,
            max_backoff_seconds=cfg.llm.max_backoff_seconds,
        )

    def async_retrying(self, service: str = "operation") -> AsyncRetrying:
        """Build a Tenacity retry controller for async operations."""

        def _log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "Retrying {} after attempt {} ({})",
                service,
                state.attempt_number,
                type(exc).__name__ if exc else "unknown",
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_random_exponential(
                multiplier=self.initial_backoff_seconds, max=self.max_backoff_seconds
            ),
            retry=retry_if_exception_type(TRANSIENT_EXCEPTIONS),
            before_sleep=_log_retry,
            reraise=True,
        )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    service: str,
) -> T:
    """Run ``operation`` under ``policy``.

    Each attempt is bounded by ``policy.timeout_seconds``; timeouts and other
    transient failures are retried with jittered exponential backoff.

    Args:
        operation: Zero-argument factory returning a fresh awaitable per attempt.
        policy: Retry and timeout policy.
        service: Service label used in errors and logs.

    Returns:
        The operation result.

    Raises:
        TransientServiceError: When every attempt failed transiently.
    """
    try:
        async for attempt in policy.async_retrying(service):
            with attempt:
                return await asyncio.wait_for(
                    operation(), timeout=policy.timeout_seconds
                )
    except TransientServiceError:
        raise
    except TRANSIENT_EXCEPTIONS as exc:
        raise TransientServiceError(
            f"{service} failed after {policy.max_retries + 1} attempts",
            service=service,
        ) from exc
    raise RuntimeError("Async retry loop failed to return a result")


__all__ = ["RetryPolicy", "call_with_retry"]
