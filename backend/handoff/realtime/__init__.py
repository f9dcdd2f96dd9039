"""
Real-time layer: event routing, notifications, the queue worker and the
inbound gateway.
"""

from .router import (
    AGENTS_ALL,
    SUPERVISORS,
    Connection,
    EventRouter,
    agent_group,
    department_group,
    owner_group,
    session_group,
)
from .notifications import TicketNotifier
from .bridge import RedisEventBridge
from .worker import MessageWorker
from .gateway import ChatGateway

__all__ = [
    'AGENTS_ALL',
    'SUPERVISORS',
    'Connection',
    'EventRouter',
    'agent_group',
    'department_group',
    'owner_group',
    'session_group',
    'TicketNotifier',
    'RedisEventBridge',
    'MessageWorker',
    'ChatGateway',
]
