"""
Retry Logic and Rate Limiting for provider calls
Provides resilient API calls with exponential backoff.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Callable, Awaitable, TypeVar, Dict, List

from .exceptions import RateLimitTimeoutError, TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 5
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.5  # Random factor 0.5-1.5x

    # HTTP statuses worth another attempt
    retryable_statuses: List[int] = field(default_factory=lambda: [
        429,
        502,
        503,
        504,
    ])


@dataclass
class RetryStats:
    """Statistics for retry operations."""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retried_operations: int = 0
    last_error: Optional[str] = None
    last_error_time: Optional[float] = None


class RetryHandler:
    """
    Handle retries with exponential backoff.
    Only transport failures and throttling statuses are retried; anything
    the provider answered deliberately propagates on the first attempt.
    """

    def __init__(self, config: RetryConfig = None):
        self.config = config or RetryConfig()
        self._failure_counts: Dict[str, int] = {}
        self._stats = RetryStats()

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_id: str = None,
        max_attempts: int = None,
        should_retry: Callable[[Exception], bool] = None,
    ) -> T:
        """
        Execute operation with retry logic.

        Args:
            operation: Async callable to execute
            operation_id: Identifier for tracking (optional)
            max_attempts: Override max attempts (optional)
            should_retry: Custom function to determine if error is retryable

        Returns:
            Result from operation

        Raises:
            Last exception if all retries fail
        """
        max_attempts = max_attempts or self.config.max_attempts
        operation_id = operation_id or f"op_{id(operation)}"

        for attempt in range(1, max_attempts + 1):
            try:
                self._stats.total_attempts += 1
                result = await operation()

                self._failure_counts[operation_id] = 0
                self._stats.successful_attempts += 1

                if attempt > 1:
                    logger.info(
                        f"Operation {operation_id} succeeded on attempt {attempt}"
                    )

                return result

            except Exception as e:
                self._stats.failed_attempts += 1
                self._failure_counts[operation_id] = attempt
                self._stats.last_error = str(e)
                self._stats.last_error_time = datetime.now().timestamp()

                if not self._is_retryable(e, should_retry):
                    raise

                if attempt >= max_attempts:
                    logger.error(
                        f"Operation {operation_id} failed after {attempt} attempts: {e}"
                    )
                    raise

                delay = self._calculate_delay(attempt)
                self._stats.retried_operations += 1

                logger.warning(
                    f"Operation {operation_id} failed (attempt {attempt}/{max_attempts}), "
                    f"retrying in {delay:.1f}s: {e}"
                )

                await asyncio.sleep(delay)

    def _is_retryable(
        self,
        error: Exception,
        custom_check: Callable[[Exception], bool] = None,
    ) -> bool:
        """Determine if an error is retryable."""
        if custom_check:
            return custom_check(error)

        if isinstance(error, (TransportError, ConnectionError, TimeoutError)):
            return True

        status = getattr(error, "status", None)
        return status in self.config.retryable_statuses

    def _calculate_delay(self, attempt: int) -> float:
        """Calculate delay with exponential backoff and optional jitter."""
        delay = self.config.initial_delay * (
            self.config.exponential_base ** (attempt - 1)
        )
        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            jitter = 1.0 + (random.random() * 2 - 1) * self.config.jitter_factor
            delay = delay * jitter

        return max(0.0, delay)

    def get_failure_count(self, operation_id: str) -> int:
        """Get current failure count for an operation."""
        return self._failure_counts.get(operation_id, 0)

    def get_stats(self) -> dict:
        """Get retry statistics."""
        return {
            "total_attempts": self._stats.total_attempts,
            "successful_attempts": self._stats.successful_attempts,
            "failed_attempts": self._stats.failed_attempts,
            "retried_operations": self._stats.retried_operations,
            "last_error": self._stats.last_error,
            "last_error_time": self._stats.last_error_time,
        }


class RateLimiter:
    """
    Token bucket rate limiter for API calls.
    Keeps request volume under the provider's per-minute allowance.
    """

    def __init__(
        self,
        rate: float = 4.0,  # requests per second
        burst: int = 10,    # max burst size
    ):
        self.rate = rate
        self.burst = burst
        self._tokens = float(burst)
        self._last_update = datetime.now().timestamp()
        self._lock = asyncio.Lock()
        self._total_requests = 0
        self._throttled_requests = 0

    async def acquire(self, timeout: float = 30.0) -> None:
        """
        Acquire a token, waiting if necessary.

        Args:
            timeout: Maximum time to wait for a token

        Raises:
            RateLimitTimeoutError: if no token became available in time
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()

        while True:
            async with self._lock:
                now = datetime.now().timestamp()
                elapsed = now - self._last_update
                self._last_update = now

                self._tokens = min(
                    float(self.burst),
                    self._tokens + elapsed * self.rate
                )

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    self._total_requests += 1
                    return

                wait_time = (1.0 - self._tokens) / self.rate

            if loop.time() - start_time > timeout:
                self._throttled_requests += 1
                raise RateLimitTimeoutError(
                    f"No request slot available within {timeout:.0f}s", timeout=timeout
                )

            await asyncio.sleep(min(wait_time, 0.1))

    def get_stats(self) -> dict:
        """Get rate limiter statistics."""
        return {
            "rate_per_second": self.rate,
            "burst_size": self.burst,
            "available_tokens": self._tokens,
            "total_requests": self._total_requests,
            "throttled_requests": self._throttled_requests,
        }
