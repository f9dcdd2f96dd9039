"""
Per-identity rate limiter.
Counts messages in epoch-aligned minute and hour windows held in the
coordination store, so every instance shares the same counters.

Version: 1.0.0
"""
import logging
import math
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from cachetools import TTLCache

from ..exceptions import StoreUnavailableError
from ..models.rate_limit import (
    RateLimitResult,
    RateLimitStatus,
    RateLimitViolation,
    RateLimitWindow,
)
from ..store import CoordinationStore
from ..utils.telemetry import track_rate_limit_denial

logger = logging.getLogger(__name__)

BYPASS_KEY = "ratelimit:bypass"


class RateLimiter:
    """
    Fixed-window rate limiter with a shared bypass list.

    The window index is part of the counter key, so a window's count starts
    from zero exactly at its boundary no matter when the first call landed.
    """

    def __init__(
        self,
        store: CoordinationStore,
        per_minute: int = 10,
        per_hour: int = 100,
        bypass: Iterable[str] = (),
        violation_log_size: int = 100,
        violation_ttl: int = 7 * 24 * 3600,
        bypass_cache_ttl: int = 30,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize rate limiter.

        Args:
            store: Coordination store holding the counters
            per_minute: Calls allowed per minute window
            per_hour: Calls allowed per hour window
            bypass: Owner ids that are never limited
            violation_log_size: Violations kept per owner
            violation_ttl: Seconds a violation log is kept
            bypass_cache_ttl: Seconds a shared bypass lookup is cached locally
            clock: Epoch seconds source
        """
        self.store = store
        self.per_minute = per_minute
        self.per_hour = per_hour
        self.static_bypass = set(bypass)
        self.violation_log_size = violation_log_size
        self.violation_ttl = violation_ttl
        self.clock = clock
        self.bypass_cache: TTLCache = TTLCache(maxsize=10000, ttl=bypass_cache_ttl)

        logger.info(
            f"RateLimiter initialized (per_minute={per_minute}, per_hour={per_hour}, "
            f"static_bypass={len(self.static_bypass)})"
        )

    def _limits(self) -> List[Tuple[RateLimitWindow, int]]:
        # Minute first: it is the one users hit in practice
        return [
            (RateLimitWindow.MINUTE, self.per_minute),
            (RateLimitWindow.HOUR, self.per_hour),
        ]

    @staticmethod
    def _counter_key(owner_id: str, window: RateLimitWindow, index: int) -> str:
        return f"ratelimit:{owner_id}:{window.value}:{index}"

    @staticmethod
    def _violations_key(owner_id: str) -> str:
        return f"ratelimit:violations:{owner_id}"

    @staticmethod
    def _reset_in(now: float, window: RateLimitWindow) -> int:
        index = int(now // window.seconds)
        return max(1, math.ceil((index + 1) * window.seconds - now))

    async def is_bypassed(self, owner_id: str) -> bool:
        if owner_id in self.static_bypass:
            return True

        cached = self.bypass_cache.get(owner_id)
        if cached is not None:
            return cached

        bypassed = await self.store.set_contains(BYPASS_KEY, owner_id)
        self.bypass_cache[owner_id] = bypassed
        return bypassed

    async def check_rate_limit(self, owner_id: str) -> RateLimitResult:
        """
        Count one call for ``owner_id`` and decide whether it is allowed.

        Args:
            owner_id: Identity being limited

        Returns:
            RateLimitResult; on denial ``retry_after`` is the number of
            seconds until the denying window resets
        """
        try:
            if await self.is_bypassed(owner_id):
                return RateLimitResult(allowed=True, remaining=self.per_minute, bypassed=True)

            now = self.clock()
            remaining = []

            for window, limit in self._limits():
                index = int(now // window.seconds)
                count = await self.store.incr(
                    self._counter_key(owner_id, window, index),
                    ttl=window.seconds
                )

                if count > limit:
                    retry_after = self._reset_in(now, window)
                    await self._record_violation(owner_id, window, limit, count)
                    track_rate_limit_denial(window.value)
                    logger.warning(
                        f"Rate limit exceeded for {owner_id} "
                        f"({window.value}: {count}/{limit}, retry in {retry_after}s)"
                    )
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        retry_after=retry_after,
                        window=window,
                        limit=limit
                    )

                remaining.append(limit - count)

            return RateLimitResult(allowed=True, remaining=min(remaining))

        except StoreUnavailableError as e:
            logger.warning(f"Rate limiter failing open for {owner_id}: {e}")
            return RateLimitResult(allowed=True, remaining=self.per_minute, degraded=True)

    async def _record_violation(
        self,
        owner_id: str,
        window: RateLimitWindow,
        limit: int,
        count: int
    ) -> None:
        violation = RateLimitViolation(owner_id=owner_id, window=window, limit=limit, count=count)
        await self.store.list_push_capped(
            self._violations_key(owner_id),
            violation.model_dump(mode="json"),
            max_length=self.violation_log_size,
            ttl=self.violation_ttl
        )

    async def get_violations(self, owner_id: str, limit: Optional[int] = None) -> List[RateLimitViolation]:
        """Violations of an owner, newest first."""
        entries = await self.store.list_range(self._violations_key(owner_id))
        violations = [RateLimitViolation.model_validate(entry) for entry in reversed(entries)]
        return violations[:limit] if limit else violations

    async def get_status(self, owner_id: str) -> RateLimitStatus:
        """Current usage without counting a call."""
        now = self.clock()
        counts: Dict[RateLimitWindow, int] = {}
        for window, _ in self._limits():
            index = int(now // window.seconds)
            counts[window] = await self.store.get_counter(self._counter_key(owner_id, window, index))

        return RateLimitStatus(
            owner_id=owner_id,
            minute_count=counts[RateLimitWindow.MINUTE],
            minute_limit=self.per_minute,
            minute_reset_in=self._reset_in(now, RateLimitWindow.MINUTE),
            hour_count=counts[RateLimitWindow.HOUR],
            hour_limit=self.per_hour,
            hour_reset_in=self._reset_in(now, RateLimitWindow.HOUR),
            bypassed=await self.is_bypassed(owner_id)
        )

    async def reset(self, owner_id: str) -> None:
        """Clear the current windows of an owner."""
        now = self.clock()
        for window, _ in self._limits():
            index = int(now // window.seconds)
            await self.store.delete(self._counter_key(owner_id, window, index))
        logger.info(f"Rate limit counters reset for {owner_id}")

    async def add_bypass(self, owner_id: str) -> None:
        await self.store.set_add(BYPASS_KEY, owner_id)
        self.bypass_cache.pop(owner_id, None)
        logger.info(f"Added {owner_id} to rate limit bypass list")

    async def remove_bypass(self, owner_id: str) -> None:
        await self.store.set_remove(BYPASS_KEY, owner_id)
        self.bypass_cache.pop(owner_id, None)
        logger.info(f"Removed {owner_id} from rate limit bypass list")

    def get_config(self) -> Dict[str, Any]:
        return {
            "per_minute": self.per_minute,
            "per_hour": self.per_hour,
            "static_bypass_count": len(self.static_bypass),
            "violation_log_size": self.violation_log_size,
        }


__all__ = ['RateLimiter', 'BYPASS_KEY']
