"""
Redis-backed coordination store implementation.
Suitable for production multi-instance deployments.

Version: 1.0.0
"""
import functools
import json
import logging
from typing import Any, Dict, List, Optional, Set

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError as RedisConnectionError,
    RedisError,
    TimeoutError as RedisTimeoutError,
    WatchError,
)

from ..exceptions import StoreContentionError, StoreUnavailableError
from ..utils.retry import RetryConfig, async_retry
from .coordination_store import CoordinationStore, Document, Mutator

logger = logging.getLogger(__name__)

# Retry configuration for Redis operations
REDIS_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=0.1,
    max_delay=2.0,
    jitter=0.1,
    retry_on=(RedisConnectionError, RedisTimeoutError)
)


def store_operation(func):
    """
    Retry transient Redis failures, then surface StoreUnavailableError.

    Callers treat StoreUnavailableError as the signal to fail open.
    """
    retried = async_retry(REDIS_RETRY_CONFIG)(func)

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await retried(self, *args, **kwargs)
        except RedisError as e:
            logger.error(f"Redis error in {func.__name__}: {e}")
            raise StoreUnavailableError(f"Coordination store unavailable: {e}") from e

    return wrapper


def _encode(value: Document) -> str:
    # Canonical form so LREM can match entries read back by list_range
    return json.dumps(value, sort_keys=True, separators=(",", ":"))


def _decode(raw: Optional[str]) -> Optional[Document]:
    if raw is None:
        return None
    return json.loads(raw)


class RedisCoordinationStore(CoordinationStore):
    """
    Redis-backed implementation of CoordinationStore.

    Features:
    - Shared state across multiple instances
    - Lua scripts for counters and owner tokens
    - WATCH/MULTI optimistic transactions for document updates
    - Connection pooling with health checks
    - Retries with exponential backoff on connection errors

    Requirements:
    - Redis 5.0+ (Lua scripts)
    """

    # Lua script for counter increment that sets the TTL once
    INCREMENT_SCRIPT = """
    local value = redis.call('INCRBY', KEYS[1], ARGV[1])
    local ttl = tonumber(ARGV[2])
    if ttl > 0 and redis.call('TTL', KEYS[1]) == -1 then
        redis.call('EXPIRE', KEYS[1], ttl)
    end
    return value
    """

    # Lua script for token release (only if we own it)
    RELEASE_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    else
        return 0
    end
    """

    # Lua script for token renewal (only if we own it); ttl 0 persists the key
    RENEW_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        if tonumber(ARGV[2]) > 0 then
            return redis.call('EXPIRE', KEYS[1], ARGV[2])
        end
        redis.call('PERSIST', KEYS[1])
        return 1
    else
        return 0
    end
    """

    def __init__(
        self,
        redis_url: str,
        key_prefix: str = "handoff:",
        max_connections: int = 50,
        socket_timeout: int = 5,
        socket_connect_timeout: int = 5,
        health_check_interval: int = 30,
        max_update_attempts: int = 10
    ):
        """
        Initialize Redis coordination store.

        Args:
            redis_url: Redis connection URL
            key_prefix: Prefix for every key
            max_connections: Maximum connection pool size
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds
            health_check_interval: Health check interval in seconds
            max_update_attempts: Optimistic update attempts before giving up
        """
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.max_update_attempts = max_update_attempts

        self.pool = redis.ConnectionPool.from_url(
            redis_url,
            max_connections=max_connections,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_connect_timeout,
            retry_on_timeout=True,
            decode_responses=True,
            health_check_interval=health_check_interval,
            socket_keepalive=True
        )
        self.client: Redis = Redis(connection_pool=self.pool)

        self.increment_script = self.client.register_script(self.INCREMENT_SCRIPT)
        self.release_script = self.client.register_script(self.RELEASE_SCRIPT)
        self.renew_script = self.client.register_script(self.RENEW_SCRIPT)

        logger.info(
            f"RedisCoordinationStore initialized "
            f"(url={redis_url}, prefix={key_prefix}, max_connections={max_connections})"
        )

    def _make_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    # ===========================
    # Documents
    # ===========================

    @store_operation
    async def get(self, key: str) -> Optional[Document]:
        return _decode(await self.client.get(self._make_key(key)))

    @store_operation
    async def put(self, key: str, value: Document, ttl: Optional[int] = None) -> None:
        await self.client.set(self._make_key(key), _encode(value), ex=ttl)

    @store_operation
    async def put_if_absent(self, key: str, value: Document, ttl: Optional[int] = None) -> bool:
        created = await self.client.set(self._make_key(key), _encode(value), ex=ttl, nx=True)
        return bool(created)

    @store_operation
    async def update(
        self,
        key: str,
        mutator: Mutator,
        ttl: Optional[int] = None
    ) -> Optional[Document]:
        """Optimistic read-modify-write using WATCH/MULTI."""
        redis_key = self._make_key(key)

        async with self.client.pipeline(transaction=True) as pipe:
            for attempt in range(self.max_update_attempts):
                try:
                    await pipe.watch(redis_key)
                    current = _decode(await pipe.get(redis_key))
                    updated = mutator(current)

                    if updated is None:
                        await pipe.unwatch()
                        return None

                    remaining_ms = None
                    if ttl is None and current is not None:
                        remaining_ms = await pipe.pttl(redis_key)

                    pipe.multi()
                    if ttl is not None:
                        pipe.set(redis_key, _encode(updated), ex=ttl)
                    elif remaining_ms is not None and remaining_ms > 0:
                        pipe.set(redis_key, _encode(updated), px=remaining_ms)
                    else:
                        pipe.set(redis_key, _encode(updated))
                    await pipe.execute()
                    return updated

                except WatchError:
                    logger.debug(f"Concurrent write on {key}, retrying update (attempt {attempt + 1})")
                    continue

        raise StoreContentionError(
            f"Update of {key} lost to concurrent writers {self.max_update_attempts} times"
        )

    @store_operation
    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(self._make_key(key)))

    @store_operation
    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(self._make_key(key)))

    @store_operation
    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self.client.expire(self._make_key(key), ttl))

    @store_operation
    async def ttl(self, key: str) -> int:
        return int(await self.client.ttl(self._make_key(key)))

    # ===========================
    # Counters & Tokens
    # ===========================

    @store_operation
    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        value = await self.increment_script(
            keys=[self._make_key(key)],
            args=[amount, ttl or 0]
        )
        return int(value)

    @store_operation
    async def get_counter(self, key: str) -> int:
        value = await self.client.get(self._make_key(key))
        return int(value) if value is not None else 0

    @store_operation
    async def acquire_token(self, key: str, token: str, ttl: Optional[int]) -> bool:
        return bool(await self.client.set(self._make_key(key), token, ex=ttl, nx=True))

    @store_operation
    async def get_token(self, key: str) -> Optional[str]:
        return await self.client.get(self._make_key(key))

    @store_operation
    async def release_token(self, key: str, token: str) -> bool:
        return bool(await self.release_script(keys=[self._make_key(key)], args=[token]))

    @store_operation
    async def renew_token(self, key: str, token: str, ttl: Optional[int]) -> bool:
        return bool(await self.renew_script(keys=[self._make_key(key)], args=[token, ttl or 0]))

    # ===========================
    # Lists
    # ===========================

    @store_operation
    async def list_push(self, key: str, value: Document) -> int:
        return int(await self.client.rpush(self._make_key(key), _encode(value)))

    @store_operation
    async def list_push_capped(
        self,
        key: str,
        value: Document,
        max_length: int,
        ttl: Optional[int] = None
    ) -> int:
        redis_key = self._make_key(key)
        pipe = self.client.pipeline(transaction=True)
        pipe.rpush(redis_key, _encode(value))
        pipe.ltrim(redis_key, -max_length, -1)
        if ttl is not None:
            pipe.expire(redis_key, ttl)
        pipe.llen(redis_key)
        results = await pipe.execute()
        return int(results[-1])

    @store_operation
    async def list_pop(self, key: str) -> Optional[Document]:
        return _decode(await self.client.lpop(self._make_key(key)))

    @store_operation
    async def list_peek(self, key: str) -> Optional[Document]:
        return _decode(await self.client.lindex(self._make_key(key), 0))

    @store_operation
    async def list_length(self, key: str) -> int:
        return int(await self.client.llen(self._make_key(key)))

    @store_operation
    async def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Document]:
        raw_items = await self.client.lrange(self._make_key(key), start, end)
        return [_decode(raw) for raw in raw_items]

    @store_operation
    async def list_remove(self, key: str, value: Document) -> int:
        return int(await self.client.lrem(self._make_key(key), 0, _encode(value)))

    # ===========================
    # Sets
    # ===========================

    @store_operation
    async def set_add(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self.client.sadd(self._make_key(key), *members))

    @store_operation
    async def set_remove(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self.client.srem(self._make_key(key), *members))

    @store_operation
    async def set_members(self, key: str) -> Set[str]:
        return set(await self.client.smembers(self._make_key(key)))

    @store_operation
    async def set_contains(self, key: str, member: str) -> bool:
        return bool(await self.client.sismember(self._make_key(key), member))

    # ===========================
    # Sorted Sets
    # ===========================

    @store_operation
    async def sorted_add(self, key: str, member: str, score: float) -> None:
        await self.client.zadd(self._make_key(key), {member: score})

    @store_operation
    async def sorted_remove(self, key: str, member: str) -> bool:
        return bool(await self.client.zrem(self._make_key(key), member))

    @store_operation
    async def sorted_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        return list(await self.client.zrange(self._make_key(key), start, end))

    @store_operation
    async def sorted_rank(self, key: str, member: str) -> Optional[int]:
        rank = await self.client.zrank(self._make_key(key), member)
        return int(rank) if rank is not None else None

    @store_operation
    async def sorted_size(self, key: str) -> int:
        return int(await self.client.zcard(self._make_key(key)))

    # ===========================
    # Maintenance
    # ===========================

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    async def cleanup_expired(self) -> int:
        # Redis expires keys on its own
        return 0

    @store_operation
    async def get_stats(self) -> Dict[str, Any]:
        info = await self.client.info("memory")
        return {
            "store_type": "redis",
            "keys": await self.client.dbsize(),
            "memory_used": info.get("used_memory_human", "unknown"),
            "key_prefix": self.key_prefix,
        }

    async def close(self) -> None:
        await self.client.aclose()
        await self.pool.disconnect()
        logger.info("Redis coordination store closed")


__all__ = ['RedisCoordinationStore', 'store_operation']
