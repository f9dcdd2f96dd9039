"""
Domain exceptions for the handoff core.
Raised where the failure happens; translated to events or HTTP codes at the edges.
"""
from typing import Optional


class HandoffError(Exception):
    """Base class for all handoff core errors."""

    code = "HANDOFF_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code


class StoreUnavailableError(HandoffError):
    """Raised when the coordination store cannot be reached."""

    code = "STORE_UNAVAILABLE"


class StoreContentionError(HandoffError):
    """Raised when an optimistic update keeps losing to concurrent writers."""

    code = "STORE_CONTENTION"


class QueueFullError(HandoffError):
    """Raised when enqueueing onto a queue at capacity."""

    code = "QUEUE_FULL"


class SessionNotFoundError(HandoffError):
    """Raised when a session does not exist or has expired."""

    code = "SESSION_NOT_FOUND"


class TicketNotFoundError(HandoffError):
    """Raised when a ticket id is unknown."""

    code = "TICKET_NOT_FOUND"


class InvalidTransitionError(HandoffError):
    """Raised when a ticket transition is not allowed from its current status."""

    code = "INVALID_TRANSITION"

    def __init__(self, ticket_id: str, current: str, target: str):
        super().__init__(
            f"Ticket {ticket_id} cannot move from '{current}' to '{target}'"
        )
        self.ticket_id = ticket_id
        self.current = current
        self.target = target


class AssignmentConflictError(HandoffError):
    """Raised when a ticket was taken by someone else before this update landed."""

    code = "ASSIGNMENT_CONFLICT"

    def __init__(self, ticket_id: str, message: Optional[str] = None):
        super().__init__(message or f"Ticket {ticket_id} is no longer waiting")
        self.ticket_id = ticket_id


class AgentNotFoundError(HandoffError):
    """Raised when an agent id is not registered in the pool."""

    code = "AGENT_NOT_FOUND"


class AgentUnavailableError(HandoffError):
    """Raised when an agent cannot take another chat."""

    code = "AGENT_UNAVAILABLE"


class NotAssignedAgentError(HandoffError):
    """Raised when an agent acts on a ticket assigned to someone else."""

    code = "NOT_ASSIGNED_AGENT"


class FeedbackError(HandoffError):
    """Raised when feedback cannot be recorded for a ticket."""

    code = "FEEDBACK_REJECTED"


class AIServiceError(HandoffError):
    """Raised when the AI collaborator fails to produce a reply."""

    code = "AI_UNAVAILABLE"


__all__ = [
    'HandoffError',
    'StoreUnavailableError',
    'StoreContentionError',
    'QueueFullError',
    'SessionNotFoundError',
    'TicketNotFoundError',
    'InvalidTransitionError',
    'AssignmentConflictError',
    'AgentNotFoundError',
    'AgentUnavailableError',
    'NotAssignedAgentError',
    'FeedbackError',
    'AIServiceError',
]
