"""
FIFO message queue.
Decouples receiving a chat message from processing it. Each instance owns
one queue, so the worker that dequeues a message runs next to the
connection waiting for the reply.
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..exceptions import QueueFullError
from ..models.queue import QueuedMessage
from ..store import CoordinationStore
from ..utils.telemetry import update_queue_depth

logger = logging.getLogger(__name__)


class MessageQueue:
    """
    Bounded FIFO queue in the coordination store.

    The capacity check and the push are two store calls, so under heavy
    concurrency the queue may briefly overshoot ``max_size`` by the number
    of racing producers.
    """

    def __init__(self, store: CoordinationStore, name: str = "chat", max_size: int = 1000):
        self.store = store
        self.name = name
        self.key = f"queue:{name}"
        self.max_size = max_size

        logger.info(f"MessageQueue '{name}' initialized (max_size={max_size})")

    async def enqueue(self, message: QueuedMessage) -> int:
        """
        Append a message.

        Returns:
            1-based position of the message in the queue

        Raises:
            QueueFullError: If the queue is at capacity
        """
        if await self.store.list_length(self.key) >= self.max_size:
            logger.warning(f"Queue '{self.name}' is full, rejecting message {message.id}")
            raise QueueFullError(f"Queue '{self.name}' is full")

        position = await self.store.list_push(self.key, message.to_dict())
        update_queue_depth(position)
        logger.debug(f"Enqueued {message.id} for session {message.session_id} at position {position}")
        return position

    async def dequeue(self) -> Optional[QueuedMessage]:
        data = await self.store.list_pop(self.key)
        if data is None:
            return None
        return QueuedMessage.from_dict(data)

    async def peek(self) -> Optional[QueuedMessage]:
        data = await self.store.list_peek(self.key)
        return QueuedMessage.from_dict(data) if data is not None else None

    async def size(self) -> int:
        return await self.store.list_length(self.key)

    async def is_empty(self) -> bool:
        return await self.size() == 0

    async def clear(self) -> int:
        """Drop every queued message. Returns how many were dropped."""
        count = await self.size()
        await self.store.delete(self.key)
        update_queue_depth(0)
        logger.info(f"Cleared {count} messages from queue '{self.name}'")
        return count

    async def get_all(self) -> List[QueuedMessage]:
        return [QueuedMessage.from_dict(item) for item in await self.store.list_range(self.key)]

    async def remove_by_id(self, message_id: str) -> bool:
        for item in await self.store.list_range(self.key):
            if item.get("id") == message_id:
                return await self.store.list_remove(self.key, item) > 0
        return False

    async def get_stats(self) -> Dict[str, Any]:
        size = await self.size()
        return {
            "name": self.name,
            "size": size,
            "max_size": self.max_size,
            "is_empty": size == 0,
            "is_full": size >= self.max_size,
            "utilization_percent": round(size / self.max_size * 100, 2),
        }

    async def process_batch(
        self,
        handler: Callable[[QueuedMessage], Awaitable[None]],
        batch_size: int = 10
    ) -> int:
        """
        Dequeue up to ``batch_size`` messages and hand each to ``handler``.

        A failing handler is logged and does not stop the batch.

        Returns:
            Number of messages dequeued
        """
        processed = 0
        for _ in range(batch_size):
            message = await self.dequeue()
            if message is None:
                break
            processed += 1
            try:
                await handler(message)
            except Exception as e:
                logger.error(f"Error processing queued message {message.id}: {e}", exc_info=True)

        if processed:
            update_queue_depth(await self.size())
        return processed


__all__ = ['MessageQueue']
