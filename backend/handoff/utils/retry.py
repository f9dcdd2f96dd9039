"""
Retry and circuit breaking for calls that leave the process.
The Redis store retries transient connection errors; the HTTP AI
collaborator sits behind a circuit breaker so a dead endpoint fails fast.

Version: 1.0.0
"""
import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """
    Backoff policy: base_delay doubles per attempt up to max_delay, with up
    to ``jitter`` of the delay added at random.
    """
    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 2.0
    jitter: float = 0.0
    retry_on: Tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError)

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt (0-indexed)."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, delay * self.jitter)
        return delay


def async_retry(config: Optional[RetryConfig] = None):
    """
    Retry an async callable on ``config.retry_on``.

    Anything else propagates immediately; the last retryable error is
    re-raised once attempts run out.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except config.retry_on as e:
                    attempt += 1
                    if attempt >= config.max_attempts:
                        logger.error(f"{func.__name__} gave up after {attempt} attempts: {e}")
                        raise
                    delay = config.delay_for(attempt - 1)
                    logger.warning(
                        f"{func.__name__} hit {type(e).__name__}, "
                        f"attempt {attempt}/{config.max_attempts}, next try in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper
    return decorator


class CircuitBreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpenError(Exception):
    """The breaker rejected the call without running it."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit '{name}' is open, retry in {retry_after:.1f}s")


class CircuitBreaker:
    """
    Consecutive-failure circuit breaker.

    ``failure_threshold`` failures in a row open the circuit. After
    ``recovery_timeout`` seconds one trial call is let through: success
    closes the circuit, failure opens it for another full timeout.
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock

        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitBreakerState:
        if self.opened_at is None:
            return CircuitBreakerState.CLOSED
        if self.retry_after() > 0 or self._trial_in_flight:
            return CircuitBreakerState.OPEN
        return CircuitBreakerState.HALF_OPEN

    def retry_after(self) -> float:
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.opened_at + self.recovery_timeout - self.clock())

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Run ``func`` unless the circuit is open.

        Raises:
            CircuitBreakerOpenError: If the call was rejected
        """
        state = self.state
        if state == CircuitBreakerState.OPEN:
            raise CircuitBreakerOpenError(self.name, self.retry_after())
        if state == CircuitBreakerState.HALF_OPEN:
            logger.info(f"Circuit '{self.name}' letting a trial call through after {self.recovery_timeout}s")
            self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        if self.opened_at is not None:
            logger.info(f"✓ Circuit '{self.name}' closed")
        self.failure_count = 0
        self.opened_at = None
        self._trial_in_flight = False

    def _record_failure(self) -> None:
        self.failure_count += 1
        if self._trial_in_flight or self.failure_count >= self.failure_threshold:
            if not self._trial_in_flight:
                logger.warning(f"Circuit '{self.name}' opened after {self.failure_count} failures")
            self.opened_at = self.clock()
        self._trial_in_flight = False

    def reset(self) -> None:
        self.failure_count = 0
        self.opened_at = None
        self._trial_in_flight = False


__all__ = [
    'RetryConfig',
    'async_retry',
    'CircuitBreaker',
    'CircuitBreakerState',
    'CircuitBreakerOpenError',
]
