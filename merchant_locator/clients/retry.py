"""
Retry and circuit-breaker decorator for provider calls.

    search = with_retry(client.category_search, RetryPolicy(), breaker=CircuitBreaker("category"))
    response = await search(query, page)
"""
import asyncio
import functools
import time
from typing import Awaitable, Callable, Optional, TypeVar

from loguru import logger

from merchant_locator.config import CIRCUIT_FAILURE_THRESHOLD, CIRCUIT_RESET_TIMEOUT
from merchant_locator.errors import (
    CircuitOpenError,
    MaxRetriesExceeded,
    ProviderError,
    ProviderTimeout,
)
from merchant_locator.models import CancellationToken, RetryPolicy

T = TypeVar("T")


class CircuitBreaker:
    """
    Stops calling a failing service for a while.

    Opens after `failure_threshold` consecutive failures; after
    `reset_timeout` seconds one trial call is let through (half-open) and its
    outcome closes or reopens the circuit.
    """

    def __init__(
        self,
        identifier: str,
        failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD,
        reset_timeout: float = CIRCUIT_RESET_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.identifier = identifier
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self.failures = 0
        self.state = "closed"
        self._opened_at: Optional[float] = None

    def allow(self) -> bool:
        if self.state == "open":
            if self._clock() - self._opened_at >= self.reset_timeout:
                self.state = "half-open"
                logger.info(f"Circuit half-open: {self.identifier}")
                return True
            return False
        return True

    def record_success(self) -> None:
        self.failures = 0
        self.state = "closed"
        self._opened_at = None

    def record_failure(self) -> None:
        self.failures += 1
        if self.state == "half-open" or self.failures >= self.failure_threshold:
            if self.state != "open":
                logger.warning(f"⚠️ Circuit open: {self.identifier} ({self.failures} failures)")
            self.state = "open"
            self._opened_at = self._clock()


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, ProviderTimeout):
        return True
    if isinstance(exc, ProviderError):
        return exc.retryable
    return isinstance(exc, (asyncio.TimeoutError, ConnectionError))


def retry_delay(policy: RetryPolicy, attempt: int) -> float:
    if policy.backoff == "exponential":
        return policy.delay * (2 ** (attempt - 1))
    if policy.backoff == "linear":
        return policy.delay * attempt
    return policy.delay


def with_retry(
    call: Callable[..., Awaitable[T]],
    policy: RetryPolicy,
    breaker: Optional[CircuitBreaker] = None,
    cancel_token: Optional[CancellationToken] = None,
    identifier: Optional[str] = None,
) -> Callable[..., Awaitable[T]]:
    """
    Wrap an async provider call with retries and an optional circuit breaker.

    Only retryable errors are retried. No retry is issued once `cancel_token`
    is set.

    Args:
        call: Async callable to wrap.
        policy (RetryPolicy): Attempt count and backoff.
        breaker (Optional[CircuitBreaker]): Shared breaker for this call.
        cancel_token (Optional[CancellationToken]): Session cancellation flag.
        identifier (Optional[str]): Name used in logs and errors.

    Returns:
        Async callable with the same signature.

    Raises:
        CircuitOpenError: If the breaker is open.
        MaxRetriesExceeded: If every attempt failed with a retryable error.
    """
    name = identifier or (breaker.identifier if breaker else getattr(call, "__name__", "call"))

    @functools.wraps(call)
    async def wrapper(*args, **kwargs):
        if breaker is not None and not breaker.allow():
            raise CircuitOpenError(name)
        attempt = 0
        while True:
            try:
                result = await call(*args, **kwargs)
            except Exception as e:
                attempt += 1
                out_of_attempts = attempt > policy.max_retries
                cancelled = cancel_token is not None and cancel_token.cancelled
                if not is_retryable(e) or out_of_attempts or cancelled:
                    if breaker is not None:
                        breaker.record_failure()
                    if is_retryable(e) and out_of_attempts and policy.max_retries > 0:
                        raise MaxRetriesExceeded(name, attempt, e) from e
                    raise
                delay = retry_delay(policy, attempt)
                logger.warning(f"⚠️ {name} failed ({e}); retry {attempt}/{policy.max_retries} in {delay:.1f}s")
                await asyncio.sleep(delay)
            else:
                if breaker is not None:
                    breaker.record_success()
                return result

    return wrapper
