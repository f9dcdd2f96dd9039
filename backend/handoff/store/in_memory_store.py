"""
In-memory coordination store implementation.
Suitable for development, tests and single-instance deployments.

Version: 1.0.0
"""
import asyncio
import logging
import time
from collections import deque
from copy import deepcopy
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from .coordination_store import CoordinationStore, Document, Mutator

logger = logging.getLogger(__name__)


class _ScoredMembers(dict):
    """member -> score mapping backing a sorted set."""


class InMemoryCoordinationStore(CoordinationStore):
    """
    In-memory implementation of CoordinationStore.

    Features:
    - One asyncio lock serialises every operation, which makes each call
      atomic for all coroutines of this process
    - TTL-based expiration, checked lazily and by cleanup_expired()
    - Deep copy on the way in and out to prevent external mutations

    Limitations:
    - State lost on restart
    - Not shared across multiple instances
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize in-memory store.

        Args:
            clock: Monotonic seconds source used for expiry
        """
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.clock = clock
        self.lock = asyncio.Lock()

        logger.info("InMemoryCoordinationStore initialized")

    # ===========================
    # Internal helpers
    # ===========================

    def _alive(self, key: str) -> bool:
        """Drop the key if expired; caller holds the lock."""
        deadline = self.expiry.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.data.pop(key, None)
            del self.expiry[key]
            logger.debug(f"Key {key} expired and removed")
            return False
        return key in self.data

    def _set_ttl(self, key: str, ttl: Optional[int]) -> None:
        if ttl is None:
            self.expiry.pop(key, None)
        else:
            self.expiry[key] = self.clock() + ttl

    def _container(self, key: str, factory: Callable[[], Any]) -> Any:
        if not self._alive(key):
            self.data[key] = factory()
        return self.data[key]

    # ===========================
    # Documents
    # ===========================

    async def get(self, key: str) -> Optional[Document]:
        async with self.lock:
            if not self._alive(key):
                return None
            return deepcopy(self.data[key])

    async def put(self, key: str, value: Document, ttl: Optional[int] = None) -> None:
        async with self.lock:
            self.data[key] = deepcopy(value)
            self._set_ttl(key, ttl)

    async def put_if_absent(self, key: str, value: Document, ttl: Optional[int] = None) -> bool:
        async with self.lock:
            if self._alive(key):
                return False
            self.data[key] = deepcopy(value)
            self._set_ttl(key, ttl)
            return True

    async def update(
        self,
        key: str,
        mutator: Mutator,
        ttl: Optional[int] = None
    ) -> Optional[Document]:
        async with self.lock:
            current = deepcopy(self.data[key]) if self._alive(key) else None
            updated = mutator(current)
            if updated is None:
                return None

            self.data[key] = deepcopy(updated)
            if ttl is not None:
                self._set_ttl(key, ttl)
            return deepcopy(updated)

    async def delete(self, key: str) -> bool:
        async with self.lock:
            existed = self._alive(key)
            self.data.pop(key, None)
            self.expiry.pop(key, None)
            return existed

    async def exists(self, key: str) -> bool:
        async with self.lock:
            return self._alive(key)

    async def expire(self, key: str, ttl: int) -> bool:
        async with self.lock:
            if not self._alive(key):
                return False
            self._set_ttl(key, ttl)
            return True

    async def ttl(self, key: str) -> int:
        async with self.lock:
            if not self._alive(key):
                return -2
            deadline = self.expiry.get(key)
            if deadline is None:
                return -1
            return max(0, int(round(deadline - self.clock())))

    # ===========================
    # Counters & Tokens
    # ===========================

    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        async with self.lock:
            value = (self.data[key] if self._alive(key) else 0) + amount
            self.data[key] = value
            if ttl is not None and key not in self.expiry:
                self._set_ttl(key, ttl)
            return value

    async def get_counter(self, key: str) -> int:
        async with self.lock:
            return int(self.data[key]) if self._alive(key) else 0

    async def acquire_token(self, key: str, token: str, ttl: Optional[int]) -> bool:
        async with self.lock:
            if self._alive(key):
                return False
            self.data[key] = token
            self._set_ttl(key, ttl)
            return True

    async def get_token(self, key: str) -> Optional[str]:
        async with self.lock:
            return self.data[key] if self._alive(key) else None

    async def release_token(self, key: str, token: str) -> bool:
        async with self.lock:
            if self._alive(key) and self.data[key] == token:
                del self.data[key]
                self.expiry.pop(key, None)
                return True
            return False

    async def renew_token(self, key: str, token: str, ttl: Optional[int]) -> bool:
        async with self.lock:
            if self._alive(key) and self.data[key] == token:
                self._set_ttl(key, ttl)
                return True
            return False

    # ===========================
    # Lists
    # ===========================

    async def list_push(self, key: str, value: Document) -> int:
        async with self.lock:
            items: Deque[Document] = self._container(key, deque)
            items.append(deepcopy(value))
            return len(items)

    async def list_push_capped(
        self,
        key: str,
        value: Document,
        max_length: int,
        ttl: Optional[int] = None
    ) -> int:
        async with self.lock:
            items: Deque[Document] = self._container(key, deque)
            items.append(deepcopy(value))
            while len(items) > max_length:
                items.popleft()
            if ttl is not None:
                self._set_ttl(key, ttl)
            return len(items)

    async def list_pop(self, key: str) -> Optional[Document]:
        async with self.lock:
            if not self._alive(key) or not self.data[key]:
                return None
            return self.data[key].popleft()

    async def list_peek(self, key: str) -> Optional[Document]:
        async with self.lock:
            if not self._alive(key) or not self.data[key]:
                return None
            return deepcopy(self.data[key][0])

    async def list_length(self, key: str) -> int:
        async with self.lock:
            return len(self.data[key]) if self._alive(key) else 0

    async def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Document]:
        async with self.lock:
            if not self._alive(key):
                return []
            items = list(self.data[key])
            stop = None if end == -1 else end + 1
            return deepcopy(items[start:stop])

    async def list_remove(self, key: str, value: Document) -> int:
        async with self.lock:
            if not self._alive(key):
                return 0
            items: Deque[Document] = self.data[key]
            kept = deque(item for item in items if item != value)
            removed = len(items) - len(kept)
            self.data[key] = kept
            return removed

    # ===========================
    # Sets
    # ===========================

    async def set_add(self, key: str, *members: str) -> int:
        async with self.lock:
            current: Set[str] = self._container(key, set)
            before = len(current)
            current.update(members)
            return len(current) - before

    async def set_remove(self, key: str, *members: str) -> int:
        async with self.lock:
            if not self._alive(key):
                return 0
            current: Set[str] = self.data[key]
            removed = len(current.intersection(members))
            current.difference_update(members)
            return removed

    async def set_members(self, key: str) -> Set[str]:
        async with self.lock:
            return set(self.data[key]) if self._alive(key) else set()

    async def set_contains(self, key: str, member: str) -> bool:
        async with self.lock:
            return self._alive(key) and member in self.data[key]

    # ===========================
    # Sorted Sets
    # ===========================

    def _ordered(self, key: str) -> List[str]:
        scored: _ScoredMembers = self.data[key]
        return [member for member, _ in sorted(scored.items(), key=lambda kv: (kv[1], kv[0]))]

    async def sorted_add(self, key: str, member: str, score: float) -> None:
        async with self.lock:
            scored: _ScoredMembers = self._container(key, _ScoredMembers)
            scored[member] = float(score)

    async def sorted_remove(self, key: str, member: str) -> bool:
        async with self.lock:
            if not self._alive(key):
                return False
            return self.data[key].pop(member, None) is not None

    async def sorted_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        async with self.lock:
            if not self._alive(key):
                return []
            ordered = self._ordered(key)
            stop = None if end == -1 else end + 1
            return ordered[start:stop]

    async def sorted_rank(self, key: str, member: str) -> Optional[int]:
        async with self.lock:
            if not self._alive(key) or member not in self.data[key]:
                return None
            return self._ordered(key).index(member)

    async def sorted_size(self, key: str) -> int:
        async with self.lock:
            return len(self.data[key]) if self._alive(key) else 0

    # ===========================
    # Maintenance
    # ===========================

    async def ping(self) -> bool:
        return True

    async def cleanup_expired(self) -> int:
        async with self.lock:
            now = self.clock()
            expired = [key for key, deadline in self.expiry.items() if now >= deadline]
            for key in expired:
                self.data.pop(key, None)
                del self.expiry[key]

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired keys")
        return len(expired)

    async def get_stats(self) -> Dict[str, Any]:
        async with self.lock:
            return {
                "store_type": "in_memory",
                "keys": len(self.data),
                "keys_with_ttl": len(self.expiry),
            }


__all__ = ['InMemoryCoordinationStore']
