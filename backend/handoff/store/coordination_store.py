"""
Abstract coordination store interface.
Every piece of shared mutable state (rate counters, queues, tickets, the
agent pool) goes through these operations so that concurrent handlers and
service instances see one consistent view.

Version: 1.0.0
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Set

from ..utils.clock import utcnow

Document = Dict[str, Any]

# Receives the stored document (None when absent) and returns the new
# document, or None to leave the key untouched. May run more than once.
Mutator = Callable[[Optional[Document]], Optional[Document]]


class CoordinationStore(ABC):
    """
    Abstract base class for shared coordination state.

    Implementations must make each operation atomic with respect to every
    other caller of the same store:
    - JSON documents with optional TTL and read-modify-write updates
    - Counters that pick up a TTL when created
    - Owner tokens for leases/locks
    - FIFO lists, sets and score-ordered sets
    """

    # ===========================
    # Documents
    # ===========================

    @abstractmethod
    async def get(self, key: str) -> Optional[Document]:
        """
        Get a document by key.

        Args:
            key: Logical key

        Returns:
            Document or None if missing/expired
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: Document, ttl: Optional[int] = None) -> None:
        """
        Store a document, replacing any previous value.

        Args:
            key: Logical key
            value: JSON-serializable document
            ttl: Time-to-live in seconds (None keeps the key forever)
        """
        pass

    @abstractmethod
    async def put_if_absent(self, key: str, value: Document, ttl: Optional[int] = None) -> bool:
        """
        Store a document only if the key does not exist.

        Returns:
            True if this call created the key
        """
        pass

    @abstractmethod
    async def update(
        self,
        key: str,
        mutator: Mutator,
        ttl: Optional[int] = None
    ) -> Optional[Document]:
        """
        Atomically read, transform and write a document.

        The mutator must be free of side effects: optimistic implementations
        re-run it when another writer got in between.

        Args:
            key: Logical key
            mutator: Function from current document to new document (or None)
            ttl: New TTL in seconds; None preserves the remaining TTL

        Returns:
            The written document, or None when the mutator declined
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key of any kind. Returns True if it existed."""
        pass

    @abstractmethod
    async def exists(self, key: str) -> bool:
        pass

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool:
        """
        Reset the TTL of an existing key.

        Returns:
            True if the key exists
        """
        pass

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """
        Remaining TTL in seconds.

        Returns:
            Seconds left, -1 for keys without expiry, -2 for missing keys
        """
        pass

    # ===========================
    # Counters & Tokens
    # ===========================

    @abstractmethod
    async def incr(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        """
        Atomically increment a counter.

        The TTL is applied when the counter has none yet, so a window
        counter expires relative to its first increment.

        Returns:
            Counter value after the increment
        """
        pass

    @abstractmethod
    async def get_counter(self, key: str) -> int:
        """Current counter value (0 when missing)."""
        pass

    @abstractmethod
    async def acquire_token(self, key: str, token: str, ttl: Optional[int]) -> bool:
        """Set ``key`` to ``token`` only if unset. Returns True on success."""
        pass

    @abstractmethod
    async def get_token(self, key: str) -> Optional[str]:
        """Current holder of ``key``, or None."""
        pass

    @abstractmethod
    async def release_token(self, key: str, token: str) -> bool:
        """Delete ``key`` only if it still holds ``token``."""
        pass

    @abstractmethod
    async def renew_token(self, key: str, token: str, ttl: Optional[int]) -> bool:
        """Extend ``key`` only if it still holds ``token``; ttl None removes the expiry."""
        pass

    # ===========================
    # Lists (FIFO)
    # ===========================

    @abstractmethod
    async def list_push(self, key: str, value: Document) -> int:
        """Append to the tail. Returns the new length."""
        pass

    @abstractmethod
    async def list_push_capped(
        self,
        key: str,
        value: Document,
        max_length: int,
        ttl: Optional[int] = None
    ) -> int:
        """Append and trim to the newest ``max_length`` entries."""
        pass

    @abstractmethod
    async def list_pop(self, key: str) -> Optional[Document]:
        """Remove and return the head."""
        pass

    @abstractmethod
    async def list_peek(self, key: str) -> Optional[Document]:
        pass

    @abstractmethod
    async def list_length(self, key: str) -> int:
        pass

    @abstractmethod
    async def list_range(self, key: str, start: int = 0, end: int = -1) -> List[Document]:
        """Entries between two inclusive indexes (negative counts from the tail)."""
        pass

    @abstractmethod
    async def list_remove(self, key: str, value: Document) -> int:
        """Remove every entry equal to ``value``. Returns the number removed."""
        pass

    # ===========================
    # Sets
    # ===========================

    @abstractmethod
    async def set_add(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    async def set_remove(self, key: str, *members: str) -> int:
        pass

    @abstractmethod
    async def set_members(self, key: str) -> Set[str]:
        pass

    @abstractmethod
    async def set_contains(self, key: str, member: str) -> bool:
        pass

    # ===========================
    # Sorted Sets
    # ===========================

    @abstractmethod
    async def sorted_add(self, key: str, member: str, score: float) -> None:
        """Insert or re-score a member."""
        pass

    @abstractmethod
    async def sorted_remove(self, key: str, member: str) -> bool:
        pass

    @abstractmethod
    async def sorted_range(self, key: str, start: int = 0, end: int = -1) -> List[str]:
        """Members ordered by ascending score, ties by member."""
        pass

    @abstractmethod
    async def sorted_rank(self, key: str, member: str) -> Optional[int]:
        """0-based rank by ascending score, None if absent."""
        pass

    @abstractmethod
    async def sorted_size(self, key: str) -> int:
        pass

    # ===========================
    # Maintenance
    # ===========================

    @abstractmethod
    async def ping(self) -> bool:
        pass

    @abstractmethod
    async def cleanup_expired(self) -> int:
        """Drop expired keys. Returns the number removed."""
        pass

    @abstractmethod
    async def get_stats(self) -> Dict[str, Any]:
        pass

    async def close(self) -> None:
        """Release connections. Default is a no-op."""
        return None

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform a write/read/delete round against the store.

        Returns:
            Dictionary with health status
        """
        key = f"health_check:{utcnow().timestamp()}"
        try:
            await self.put(key, {"ok": True}, ttl=10)
            get_success = (await self.get(key)) is not None
            delete_success = await self.delete(key)
            stats = await self.get_stats()

            return {
                "healthy": get_success and delete_success,
                "operations": {
                    "get": get_success,
                    "delete": delete_success
                },
                "stats": stats
            }
        except Exception as e:
            return {
                "healthy": False,
                "error": str(e)
            }


__all__ = ['CoordinationStore', 'Document', 'Mutator']
