"""
Retry Wrapper
=============

Bounded retry with exponential backoff for fallible async calls.

Only errors classified as transient (timeouts, connection resets, rate
limits, HTTP 408/429/5xx) are retried; everything else propagates on the
first failure. Each attempt may run under its own timeout.

Usage:
    result = await call_with_retry(
        lambda: client.chat_completion(messages),
        policy=MODEL_CALL_POLICY,
        operation="intent_full",
        timeout=20.0,
    )
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from helpdesk_ai.core import ExternalServiceException
from helpdesk_ai.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_TRANSIENT_MARKERS = (
    "econnreset",
    "connection reset",
    "connection aborted",
    "timed out",
    "timeout",
    "rate limit",
    "too many requests",
    "temporarily unavailable",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff curve for one class of calls."""
    max_attempts: int
    initial_delay: float
    max_delay: float
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""
        return min(self.initial_delay * (self.multiplier ** (attempt - 1)), self.max_delay)


MODEL_CALL_POLICY = RetryPolicy(max_attempts=3, initial_delay=1.0, max_delay=8.0)
STORAGE_CALL_POLICY = RetryPolicy(max_attempts=2, initial_delay=0.5, max_delay=2.0)


def is_transient_error(exc: BaseException) -> bool:
    """
    Classify an error as worth retrying.

    Args:
        exc: The raised exception

    Returns:
        True for timeouts, network resets, rate limits and 408/429/5xx
    """
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return _is_transient_status(exc.response.status_code)
    if isinstance(exc, ExternalServiceException):
        if exc.transient:
            return True
        if exc.status_code is not None:
            return _is_transient_status(exc.status_code)

    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and _is_transient_status(status):
        return True

    text = str(exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _is_transient_status(status_code: int) -> bool:
    return status_code in TRANSIENT_STATUS_CODES or 500 <= status_code < 600


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation: str = "call",
    timeout: Optional[float] = None,
    should_retry: Callable[[BaseException], bool] = is_transient_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run ``func`` with bounded retries.

    Args:
        func: Zero-argument coroutine factory; called once per attempt
        policy: Attempts and backoff to use
        operation: Name used in log records
        timeout: Per-attempt timeout in seconds (None disables)
        should_retry: Transient-error classifier
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Whatever ``func`` returns on the first successful attempt

    Raises:
        The last error once attempts are exhausted, or the first
        non-transient error immediately
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            if timeout is not None:
                return await asyncio.wait_for(func(), timeout=timeout)
            return await func()
        except Exception as e:
            if attempt >= policy.max_attempts or not should_retry(e):
                if attempt > 1:
                    logger.warning(
                        "Retries exhausted",
                        extra={
                            "operation": operation,
                            "attempts": attempt,
                            "error": str(e) or type(e).__name__
                        }
                    )
                raise

            delay = policy.delay_for(attempt)
            logger.info(
                "Transient failure, retrying",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "delay_seconds": delay,
                    "error": str(e) or type(e).__name__
                }
            )
            await sleep(delay)
