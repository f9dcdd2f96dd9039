"""
Redis pub/sub bridge between router instances.
Every broadcast is published once on a shared channel; each instance
delivers the events published by the others to its own connections.
"""
import asyncio
import json
import logging
from typing import TYPE_CHECKING, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from ..models.events import Event

if TYPE_CHECKING:
    from .router import EventRouter

logger = logging.getLogger(__name__)


class RedisEventBridge:
    """
    Cross-instance fan-out for EventRouter.

    Publishing never raises: an instance that cannot reach Redis keeps
    serving its own connections and other instances miss the event.
    """

    def __init__(
        self,
        router: 'EventRouter',
        redis_url: str,
        channel: str = "handoff:events"
    ):
        self.router = router
        self.redis_url = redis_url
        self.channel = channel
        self.client = redis.from_url(redis_url, decode_responses=True)
        self._listener: Optional[asyncio.Task] = None

        router.bridge = self
        logger.info(f"RedisEventBridge initialized (channel={channel}, instance={router.instance_id})")

    async def publish(self, groups: List[str], event: Event) -> None:
        envelope = json.dumps({
            "origin": self.router.instance_id,
            "groups": groups,
            "event": event.to_message(),
        })
        try:
            await self.client.publish(self.channel, envelope)
        except RedisError as e:
            logger.warning(f"Could not publish {event.type.value} to other instances: {e}")

    async def handle_envelope(self, raw: str) -> int:
        """Deliver an envelope from another instance locally. Returns deliveries."""
        try:
            envelope = json.loads(raw)
            if envelope.get("origin") == self.router.instance_id:
                return 0
            event = Event.model_validate(envelope["event"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Discarding malformed bridge message: {e}")
            return 0

        return await self.router.deliver_groups_local(envelope.get("groups", []), event)

    async def listen(self, shutdown_event: asyncio.Event) -> None:
        """Consume the channel until shutdown."""
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(self.channel)
        logger.info(f"✓ Listening for events from other instances on {self.channel}")

        try:
            while not shutdown_event.is_set():
                try:
                    message = await pubsub.get_message(timeout=1.0)
                except RedisError as e:
                    logger.error(f"Bridge subscription error: {e}")
                    await asyncio.sleep(1.0)
                    continue

                if message and message.get("type") == "message":
                    await self.handle_envelope(message["data"])
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    def start(self, shutdown_event: asyncio.Event) -> asyncio.Task:
        self._listener = asyncio.create_task(self.listen(shutdown_event))
        return self._listener

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
        self.router.bridge = None
        await self.client.aclose()
        logger.info("RedisEventBridge closed")


__all__ = ['RedisEventBridge']
