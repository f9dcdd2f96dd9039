"""
Domain models.
"""
from .session import Message, MessageRole, SessionData
from .ticket import (
    AssignmentMethod,
    AssignmentRecord,
    DeadlineKind,
    DeadlineStatus,
    EmergencyResponse,
    Feedback,
    HandoffTrigger,
    PriorityLevel,
    QueueStatistics,
    SLAData,
    SLAStatus,
    Ticket,
    TicketStatus,
)
from .agent import Agent, AgentStatus
from .supervisor import AgentPerformance, AgentWorkload, TeamOverview, WorkloadDistribution
from .events import ErrorCode, Event, EventType
from .rate_limit import RateLimitResult, RateLimitStatus, RateLimitViolation, RateLimitWindow
from .queue import QueuedMessage

__all__ = [
    'Message',
    'MessageRole',
    'SessionData',
    'AssignmentMethod',
    'AssignmentRecord',
    'DeadlineKind',
    'Feedback',
    'EmergencyResponse',
    'DeadlineStatus',
    'SLAStatus',
    'HandoffTrigger',
    'PriorityLevel',
    'QueueStatistics',
    'SLAData',
    'Ticket',
    'TicketStatus',
    'Agent',
    'AgentStatus',
    'AgentPerformance',
    'AgentWorkload',
    'TeamOverview',
    'WorkloadDistribution',
    'ErrorCode',
    'Event',
    'EventType',
    'RateLimitResult',
    'RateLimitStatus',
    'RateLimitViolation',
    'RateLimitWindow',
    'QueuedMessage',
]
