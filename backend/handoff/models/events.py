"""
Outbound event types and envelope.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from ..utils.clock import utcnow


class EventType(str, Enum):
    """Events delivered through the router."""
    CONNECTED = "connected"
    CHAT_RESPONSE = "chatResponse"
    CHAT_ERROR = "chatError"
    TYPING = "typing"
    RATE_LIMIT_EXCEEDED = "rateLimitExceeded"
    HANDOFF_QUEUED = "handoffQueued"
    CUSTOMER_MESSAGE = "customerMessage"

    TICKET_CREATED = "ticketCreated"
    TICKET_ASSIGNED = "ticketAssigned"
    TICKET_UNASSIGNED = "ticketUnassigned"
    TICKET_RESOLVED = "ticketResolved"
    TICKET_CANCELLED = "ticketCancelled"
    TICKET_ESCALATED = "ticketEscalated"
    TICKET_TRANSFERRED = "ticketTransferred"
    TICKET_ACCEPT_REJECTED = "ticketAcceptRejected"
    QUEUE_UPDATE = "queueUpdate"

    SLA_WARNING = "slaWarning"
    SLA_BREACH = "slaBreach"

    AGENT_JOINED = "agentJoined"
    AGENT_STATUS = "agentStatus"
    FEEDBACK_REQUEST = "feedbackRequest"
    FEEDBACK_RECEIVED = "feedbackReceived"


class ErrorCode(str, Enum):
    """Codes carried by chatError events."""
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    EMPTY_MESSAGE = "EMPTY_MESSAGE"
    MESSAGE_TOO_LONG = "MESSAGE_TOO_LONG"
    AI_UNAVAILABLE = "AI_UNAVAILABLE"
    QUEUE_FULL = "QUEUE_FULL"
    NOT_CONNECTED = "NOT_CONNECTED"
    TICKET_ERROR = "TICKET_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class Event(BaseModel):
    """Envelope of one outbound event."""

    type: EventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_message(self) -> Dict[str, Any]:
        """JSON-ready form handed to connections."""
        return self.model_dump(mode="json")


__all__ = ['EventType', 'ErrorCode', 'Event']
