"""
Tests for the fixed-window rate limiter.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from handoff.exceptions import StoreUnavailableError
from handoff.models.rate_limit import RateLimitWindow
from handoff.services.rate_limiter import RateLimiter


# ===========================
# Fixtures
# ===========================

@pytest.fixture
def limiter(ticking_store, ticker):
    """10/minute, 100/hour limiter on the controllable clock (20s left in the minute)."""
    return RateLimiter(ticking_store, per_minute=10, per_hour=100, bypass=["vip"], clock=ticker)


# ===========================
# Window Tests
# ===========================

async def test_eleventh_call_in_a_minute_is_denied(limiter):
    """Test the 10/minute cap."""
    results = [await limiter.check_rate_limit("user-1") for _ in range(11)]

    assert all(result.allowed for result in results[:10])
    denied = results[10]
    assert denied.allowed is False
    assert denied.retry_after > 0
    assert denied.retry_after == 20
    assert denied.window == RateLimitWindow.MINUTE
    assert denied.limit == 10
    assert denied.remaining == 0


async def test_remaining_counts_down(limiter):
    first = await limiter.check_rate_limit("user-2")
    second = await limiter.check_rate_limit("user-2")

    assert first.remaining == 9
    assert second.remaining == 8


async def test_window_rollover_allows_again(limiter, ticker):
    for _ in range(11):
        await limiter.check_rate_limit("user-3")

    ticker.advance(20)

    result = await limiter.check_rate_limit("user-3")
    assert result.allowed is True
    assert result.remaining == 9


async def test_hour_window_applies_across_minutes(ticking_store, ticker):
    limiter = RateLimiter(ticking_store, per_minute=10, per_hour=15, clock=ticker)

    for _ in range(10):
        assert (await limiter.check_rate_limit("user-4")).allowed
    ticker.advance(60)
    for _ in range(5):
        assert (await limiter.check_rate_limit("user-4")).allowed

    denied = await limiter.check_rate_limit("user-4")
    assert denied.allowed is False
    assert denied.window == RateLimitWindow.HOUR
    assert denied.limit == 15


async def test_identities_are_limited_separately(limiter):
    for _ in range(10):
        await limiter.check_rate_limit("user-5")

    assert (await limiter.check_rate_limit("user-6")).allowed is True


# ===========================
# Bypass Tests
# ===========================

async def test_static_bypass_is_never_denied(limiter):
    results = [await limiter.check_rate_limit("vip") for _ in range(50)]

    assert all(result.allowed and result.bypassed for result in results)


async def test_shared_bypass_list(limiter):
    for _ in range(10):
        await limiter.check_rate_limit("user-7")
    assert (await limiter.check_rate_limit("user-7")).allowed is False

    await limiter.add_bypass("user-7")
    assert (await limiter.check_rate_limit("user-7")).allowed is True

    await limiter.remove_bypass("user-7")
    assert (await limiter.check_rate_limit("user-7")).allowed is False


# ===========================
# Status & Violations Tests
# ===========================

async def test_violations_are_logged_newest_first(limiter):
    for _ in range(12):
        await limiter.check_rate_limit("user-8")

    violations = await limiter.get_violations("user-8")
    assert len(violations) == 2
    assert [v.count for v in violations] == [12, 11]
    assert all(v.window == RateLimitWindow.MINUTE for v in violations)


async def test_status_does_not_consume(limiter):
    await limiter.check_rate_limit("user-9")

    status = await limiter.get_status("user-9")
    again = await limiter.get_status("user-9")

    assert status.minute_count == again.minute_count == 1
    assert status.hour_count == 1
    assert status.minute_reset_in == 20
    assert status.bypassed is False


async def test_reset_clears_current_windows(limiter):
    for _ in range(10):
        await limiter.check_rate_limit("user-10")

    await limiter.reset("user-10")

    assert (await limiter.check_rate_limit("user-10")).allowed is True


# ===========================
# Degradation Tests
# ===========================

async def test_fails_open_when_store_unavailable():
    """Test that an unreachable store allows the call."""
    store = MagicMock()
    store.set_contains = AsyncMock(side_effect=StoreUnavailableError("down"))
    store.incr = AsyncMock(side_effect=StoreUnavailableError("down"))
    limiter = RateLimiter(store, per_minute=1)

    result = await limiter.check_rate_limit("user-11")

    assert result.allowed is True
    assert result.degraded is True
