"""
Coordination store package.
Shared, atomically accessed state for rate counters, queues, tickets and
the agent pool.

Version: 1.0.0
"""
from typing import Optional

from .coordination_store import CoordinationStore, Document, Mutator
from .in_memory_store import InMemoryCoordinationStore
from .redis_store import RedisCoordinationStore
from .distributed_lock import DistributedLock, LockAcquisitionError


def create_coordination_store(
    store_type: str = "in_memory",
    **kwargs
) -> CoordinationStore:
    """
    Factory function to create a coordination store.

    Args:
        store_type: "in_memory" or "redis"
        **kwargs: Store-specific arguments

    Returns:
        CoordinationStore instance

    Raises:
        ValueError: If store_type is unknown or redis_url is missing
    """
    if store_type == "in_memory":
        return InMemoryCoordinationStore(**kwargs)

    if store_type == "redis":
        redis_url: Optional[str] = kwargs.pop("redis_url", None)
        if not redis_url:
            raise ValueError("redis_url is required for the redis store")
        return RedisCoordinationStore(redis_url=redis_url, **kwargs)

    raise ValueError(f"Unknown store type: {store_type}")


__all__ = [
    'CoordinationStore',
    'Document',
    'Mutator',
    'InMemoryCoordinationStore',
    'RedisCoordinationStore',
    'DistributedLock',
    'LockAcquisitionError',
    'create_coordination_store',
]
