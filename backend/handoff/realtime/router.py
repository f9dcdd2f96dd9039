"""
Group-addressed event router.
Connections join named groups (a conversation, an owner's devices, an
agent, an agent pool); events are broadcast to a group and delivered
best-effort to whoever is connected right now.
"""
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Set

from ..models.events import Event, EventType
from ..utils.telemetry import update_active_connections

if TYPE_CHECKING:
    from .bridge import RedisEventBridge

logger = logging.getLogger(__name__)

AGENTS_ALL = "agents:all"
SUPERVISORS = "agents:supervisors"


def session_group(session_id: str) -> str:
    return f"session:{session_id}"


def owner_group(owner_id: str) -> str:
    return f"owner:{owner_id}"


def agent_group(agent_id: str) -> str:
    return f"agent:{agent_id}"


def department_group(department: str) -> str:
    return f"agents:department:{department.strip().lower()}"


class Connection(ABC):
    """One live client or agent connection, independent of the transport."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self.owner_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.agent_id: Optional[str] = None
        self.language: str = "en"

    @property
    def is_agent(self) -> bool:
        return self.agent_id is not None

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        """Deliver one JSON-ready message. Raises when the peer is gone."""
        pass


class EventRouter:
    """
    Local membership tables plus optional fan-out to other instances.

    Delivery is at-most-once: a group with no live member simply misses
    the event, and a connection whose send fails is unregistered.
    """

    def __init__(self, instance_id: str = "local"):
        self.instance_id = instance_id
        self.connections: Dict[str, Connection] = {}
        self.groups: Dict[str, Set[str]] = {}
        self.memberships: Dict[str, Set[str]] = {}
        self.bridge: Optional['RedisEventBridge'] = None

        logger.info(f"EventRouter initialized (instance={instance_id})")

    # ===========================
    # Membership
    # ===========================

    def register(self, connection: Connection) -> None:
        self.connections[connection.connection_id] = connection
        self.memberships.setdefault(connection.connection_id, set())
        update_active_connections(len(self.connections))
        logger.debug(f"Connection {connection.connection_id} registered")

    def unregister(self, connection_id: str) -> None:
        self.leave_all(connection_id)
        self.memberships.pop(connection_id, None)
        if self.connections.pop(connection_id, None) is not None:
            update_active_connections(len(self.connections))
            logger.debug(f"Connection {connection_id} unregistered")

    def has_connection(self, connection_id: Optional[str]) -> bool:
        return connection_id is not None and connection_id in self.connections

    def get_connection(self, connection_id: str) -> Optional[Connection]:
        return self.connections.get(connection_id)

    def join(self, group: str, connection_id: str) -> None:
        if connection_id not in self.connections:
            logger.warning(f"Cannot join {group}: connection {connection_id} is not registered")
            return
        self.groups.setdefault(group, set()).add(connection_id)
        self.memberships[connection_id].add(group)

    def leave(self, group: str, connection_id: str) -> None:
        members = self.groups.get(group)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self.groups[group]
        self.memberships.get(connection_id, set()).discard(group)

    def leave_all(self, connection_id: str) -> None:
        for group in list(self.memberships.get(connection_id, ())):
            self.leave(group, connection_id)

    def members(self, group: str) -> Set[str]:
        return set(self.groups.get(group, ()))

    def group_size(self, group: str) -> int:
        return len(self.groups.get(group, ()))

    # ===========================
    # Delivery
    # ===========================

    async def _deliver(self, connection_id: str, event: Event) -> bool:
        connection = self.connections.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.send(event.to_message())
            return True
        except Exception as e:
            logger.error(f"Error sending {event.type.value} to {connection_id}: {e}")
            self.unregister(connection_id)
            return False

    async def send(self, connection_id: str, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> bool:
        """Send to one local connection. Returns False if it is gone."""
        return await self._deliver(connection_id, Event(type=event_type, payload=payload or {}))

    async def deliver_local(self, group: str, event: Event, exclude: Iterable[str] = ()) -> int:
        excluded = set(exclude)
        delivered = 0
        for connection_id in sorted(self.members(group) - excluded):
            if await self._deliver(connection_id, event):
                delivered += 1
        return delivered

    async def broadcast(
        self,
        group: str,
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None,
        exclude: Iterable[str] = ()
    ) -> int:
        """
        Broadcast to every member of ``group`` on every instance.

        Returns:
            Number of local connections the event reached
        """
        event = Event(type=event_type, payload=payload or {})
        delivered = await self.deliver_local(group, event, exclude)

        if self.bridge is not None:
            await self.bridge.publish([group], event)

        logger.debug(f"{event_type.value} -> {group} ({delivered} local)")
        return delivered

    async def broadcast_many(
        self,
        groups: Iterable[str],
        event_type: EventType,
        payload: Optional[Dict[str, Any]] = None
    ) -> None:
        """Broadcast to several groups, each connection receiving the event once locally."""
        event = Event(type=event_type, payload=payload or {})
        targets = list(dict.fromkeys(groups))
        await self.deliver_groups_local(targets, event)
        if self.bridge is not None:
            await self.bridge.publish(targets, event)

    async def deliver_groups_local(self, groups: Iterable[str], event: Event) -> int:
        seen: Set[str] = set()
        delivered = 0
        for group in groups:
            delivered += await self.deliver_local(group, event, exclude=seen)
            seen |= self.members(group)
        return delivered

    def get_stats(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "connections": len(self.connections),
            "groups": len(self.groups),
            "agents_online": self.group_size(AGENTS_ALL),
            "supervisors_online": self.group_size(SUPERVISORS),
        }


__all__ = [
    'Connection',
    'EventRouter',
    'AGENTS_ALL',
    'SUPERVISORS',
    'session_group',
    'owner_group',
    'agent_group',
    'department_group',
]
