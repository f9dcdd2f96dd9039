"""
Lease locks on top of the coordination store.
One instance at a time runs a cluster-wide sweep; a holder that dies
simply lets its lease run out.
"""
import asyncio
import logging
import time
import uuid
from typing import Optional

from .coordination_store import CoordinationStore

logger = logging.getLogger(__name__)


class LockAcquisitionError(Exception):
    """A blocking acquire ran out of wait time."""


class DistributedLock:
    """
    Named lease with an owner token.

    The token is fresh per acquisition, so a holder whose lease expired and
    was taken over cannot release or renew the new owner's lease.
    """

    def __init__(
        self,
        store: CoordinationStore,
        name: str,
        timeout: int = 30,
        wait_timeout: float = 5.0,
        poll_interval: float = 0.1
    ):
        self.store = store
        self.key = f"lock:{name}"
        self.timeout = timeout
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.token: Optional[str] = None

    @property
    def acquired(self) -> bool:
        return self.token is not None

    async def _try(self) -> bool:
        token = uuid.uuid4().hex
        if await self.store.acquire_token(self.key, token, self.timeout):
            self.token = token
            logger.debug(f"Lease {self.key} taken (lease={self.timeout}s)")
            return True
        return False

    async def acquire(self, blocking: bool = True) -> bool:
        """
        Take the lease.

        Non-blocking returns False when someone else holds it. Blocking polls
        until ``wait_timeout`` and then raises LockAcquisitionError.
        """
        if self.acquired:
            return True
        if await self._try():
            return True
        if not blocking:
            return False

        deadline = time.monotonic() + self.wait_timeout
        while time.monotonic() < deadline:
            await asyncio.sleep(self.poll_interval)
            if await self._try():
                return True

        raise LockAcquisitionError(f"Lease {self.key} still held after {self.wait_timeout}s")

    async def release(self) -> bool:
        """Give the lease back. False if it had already expired or changed hands."""
        if self.token is None:
            return False

        token, self.token = self.token, None
        released = await self.store.release_token(self.key, token)
        if not released:
            logger.warning(f"Lease {self.key} had already expired or changed owner")
        return released

    async def renew(self, ttl: Optional[int] = None) -> bool:
        if self.token is None:
            return False
        return await self.store.renew_token(self.key, self.token, ttl or self.timeout)

    async def __aenter__(self) -> "DistributedLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.release()


__all__ = ['DistributedLock', 'LockAcquisitionError']
