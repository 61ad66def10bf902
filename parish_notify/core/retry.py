"""Retry and backoff utilities for outbound provider calls.

Wraps any call that returns an HTTP-style response (anything exposing
``status_code``) with exponential backoff. The adapter only classifies
failures; whether a message was already delivered is decided by the
delivery ledger layered above it.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from parish_notify.core.logging import get_logger

logger = get_logger(__name__)


class StatusResponse(Protocol):
    status_code: int


R = TypeVar("R", bound=StatusResponse)


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    ``max_attempts`` counts retries after the first call, so the call is made
    at most ``max_attempts + 1`` times.
    """

    max_attempts: int = 2
    base_delay_ms: int = 500
    retryable_exceptions: tuple[type[BaseException], ...] = field(
        default_factory=lambda: (Exception,)
    )


def backoff_delay_seconds(attempt: int, base_delay_ms: int) -> float:
    """Delay to wait after failed attempt ``attempt`` (1-based)."""
    return base_delay_ms * (2 ** (attempt - 1)) / 1000


def is_retryable_status(status_code: int) -> bool:
    """5xx responses are transient; everything else is final."""
    return status_code >= 500


async def send_with_retry(
    fn: Callable[[], Awaitable[R]],
    config: RetryConfig | None = None,
    operation_name: str = "send",
) -> R:
    """
    Execute an outbound call with exponential backoff.

    - Network-level exceptions (``config.retryable_exceptions``) are retried.
    - Responses with status >= 500 are retried.
    - Responses below 500 (success or 4xx) are returned immediately.

    After the retries are exhausted the last response is returned, or the
    last exception is raised if the final attempt raised.

    Args:
        fn: Async callable performing one attempt (no arguments)
        config: Retry configuration, uses defaults if not provided
        operation_name: Name for logging purposes

    Returns:
        The first non-retryable response, or the last response received
    """
    config = config or RetryConfig()
    total_calls = config.max_attempts + 1

    for attempt in range(1, total_calls + 1):
        is_last = attempt == total_calls
        try:
            response = await fn()
        except config.retryable_exceptions as e:
            if is_last:
                logger.bind(
                    operation=operation_name,
                    attempts=attempt,
                    error=str(e),
                ).error("retry_exhausted")
                raise
            delay = backoff_delay_seconds(attempt, config.base_delay_ms)
            logger.bind(
                operation=operation_name,
                attempt=attempt,
                delay_seconds=round(delay, 3),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)
            continue

        if not is_retryable_status(response.status_code) or is_last:
            if is_retryable_status(response.status_code):
                logger.bind(
                    operation=operation_name,
                    attempts=attempt,
                    status_code=response.status_code,
                ).error("retry_exhausted")
            return response

        delay = backoff_delay_seconds(attempt, config.base_delay_ms)
        logger.bind(
            operation=operation_name,
            attempt=attempt,
            delay_seconds=round(delay, 3),
            status_code=response.status_code,
        ).warning("retry_attempt")
        await asyncio.sleep(delay)

    # Unreachable: the loop always returns or raises on its last iteration
    raise RuntimeError("Unexpected state in send_with_retry")


async def fire_and_forget(
    fn: Callable[[], Awaitable[Any]],
    config: RetryConfig | None = None,
    operation_name: str = "beacon",
) -> None:
    """Send a best-effort beacon; failures are logged and swallowed."""
    try:
        response = await send_with_retry(fn, config, operation_name)
        if response.status_code >= 400:
            logger.bind(
                operation=operation_name,
                status_code=response.status_code,
            ).debug("beacon_rejected")
    except Exception as e:
        logger.bind(operation=operation_name, error=str(e)).debug("beacon_failed")
