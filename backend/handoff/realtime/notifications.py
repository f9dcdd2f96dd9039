"""
Ticket and agent lifecycle notifications.
Builds the outbound payloads and picks the groups each event goes to.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..models.agent import Agent
from ..models.events import EventType
from ..models.ticket import AssignmentMethod, DeadlineKind, QueueStatistics, Ticket
from .router import (
    AGENTS_ALL,
    SUPERVISORS,
    EventRouter,
    agent_group,
    owner_group,
    session_group,
)

logger = logging.getLogger(__name__)


def ticket_summary(ticket: Ticket) -> Dict[str, Any]:
    """Fields safe to show to anyone following the ticket."""
    return {
        "ticket_id": ticket.id,
        "status": ticket.status.value,
        "priority": ticket.priority_level.value,
        "priority_score": ticket.priority_score,
        "department": ticket.department,
        "language": ticket.language,
        "reason": ticket.reason,
        "created_at": ticket.created_at.isoformat(),
    }


def ticket_details(ticket: Ticket) -> Dict[str, Any]:
    """Summary plus the conversation context, for the handling agent."""
    details = ticket_summary(ticket)
    details.update({
        "owner_id": ticket.owner_id,
        "session_id": ticket.conversation_ref,
        "trigger": ticket.trigger.value,
        "context": [message.model_dump(mode="json") for message in ticket.context_snapshot],
        "response_deadline": ticket.sla.response_deadline.isoformat(),
        "resolution_deadline": ticket.sla.resolution_deadline.isoformat(),
        "escalation_level": ticket.sla.escalation_level,
    })
    return details


class TicketNotifier:
    """Routes lifecycle events to the customer, agent and supervisor groups."""

    def __init__(self, router: EventRouter, feedback_base_url: str = "/feedback"):
        self.router = router
        self.feedback_base_url = feedback_base_url.rstrip("/")

    def feedback_url(self, ticket_id: str) -> str:
        return f"{self.feedback_base_url}/{ticket_id}"

    def _customer_groups(self, ticket: Ticket):
        return [session_group(ticket.conversation_ref), owner_group(ticket.owner_id)]

    async def ticket_created(self, ticket: Ticket, position: Optional[int], estimated_wait_minutes: int) -> None:
        await self.router.broadcast_many(self._customer_groups(ticket), EventType.HANDOFF_QUEUED, {
            "ticket_id": ticket.id,
            "position": position,
            "estimated_wait_minutes": estimated_wait_minutes,
            "priority": ticket.priority_level.value,
        })
        await self.router.broadcast(AGENTS_ALL, EventType.TICKET_CREATED, {
            **ticket_summary(ticket),
            "position": position,
        })

    async def ticket_assigned(self, ticket: Ticket, method: AssignmentMethod) -> None:
        agent_id = ticket.assigned_agent_id
        await self.router.broadcast_many(self._customer_groups(ticket), EventType.TICKET_ASSIGNED, {
            "ticket_id": ticket.id,
            "agent_id": agent_id,
        })
        await self.router.broadcast(session_group(ticket.conversation_ref), EventType.AGENT_JOINED, {
            "ticket_id": ticket.id,
            "agent_id": agent_id,
        })
        await self.router.broadcast(agent_group(agent_id), EventType.TICKET_ASSIGNED, {
            **ticket_details(ticket),
            "method": method.value,
        })

    async def ticket_unassigned(self, ticket: Ticket, agent_id: str, reason: str) -> None:
        payload = {"ticket_id": ticket.id, "agent_id": agent_id, "reason": reason}
        await self.router.broadcast(agent_group(agent_id), EventType.TICKET_UNASSIGNED, payload)
        await self.router.broadcast_many(self._customer_groups(ticket), EventType.TICKET_UNASSIGNED, payload)

    async def ticket_transferred(self, ticket: Ticket, from_agent_id: str, to_agent_id: str, reason: str) -> None:
        payload = {
            "ticket_id": ticket.id,
            "from_agent_id": from_agent_id,
            "to_agent_id": to_agent_id,
            "reason": reason,
        }
        await self.router.broadcast(agent_group(from_agent_id), EventType.TICKET_TRANSFERRED, payload)
        await self.router.broadcast(agent_group(to_agent_id), EventType.TICKET_TRANSFERRED, {
            **ticket_details(ticket),
            **payload,
        })
        await self.router.broadcast(session_group(ticket.conversation_ref), EventType.TICKET_TRANSFERRED, payload)

    async def ticket_resolved(self, ticket: Ticket, agent_id: str) -> None:
        payload = {
            "ticket_id": ticket.id,
            "agent_id": agent_id,
            "resolved_at": ticket.resolved_at.isoformat() if ticket.resolved_at else None,
        }
        await self.router.broadcast_many(self._customer_groups(ticket), EventType.TICKET_RESOLVED, payload)
        await self.router.broadcast(agent_group(agent_id), EventType.TICKET_RESOLVED, payload)
        await self.router.broadcast(owner_group(ticket.owner_id), EventType.FEEDBACK_REQUEST, {
            "ticket_id": ticket.id,
            "feedback_url": self.feedback_url(ticket.id),
        })

    async def ticket_cancelled(self, ticket: Ticket, agent_id: Optional[str], reason: str) -> None:
        payload = {"ticket_id": ticket.id, "reason": reason}
        await self.router.broadcast_many(self._customer_groups(ticket), EventType.TICKET_CANCELLED, payload)
        if agent_id is not None:
            await self.router.broadcast(agent_group(agent_id), EventType.TICKET_CANCELLED, payload)

    async def ticket_escalated(self, ticket: Ticket, reason: str) -> None:
        payload = {
            **ticket_summary(ticket),
            "escalation_level": ticket.sla.escalation_level,
            "assigned_agent_id": ticket.assigned_agent_id,
            "reason": reason,
        }
        groups = [SUPERVISORS]
        if ticket.assigned_agent_id:
            groups.append(agent_group(ticket.assigned_agent_id))
        await self.router.broadcast_many(groups, EventType.TICKET_ESCALATED, payload)

    async def sla_event(
        self,
        ticket: Ticket,
        kind: DeadlineKind,
        threshold: float,
        now: datetime
    ) -> None:
        deadline = ticket.sla.deadline(kind)
        event_type = EventType.SLA_BREACH if threshold >= 1.0 else EventType.SLA_WARNING
        payload = {
            "ticket_id": ticket.id,
            "deadline": kind.value,
            "deadline_at": deadline.isoformat(),
            "threshold": threshold,
            "time_remaining_seconds": round((deadline - now).total_seconds(), 1),
            "priority": ticket.priority_level.value,
        }
        groups = [SUPERVISORS]
        if ticket.assigned_agent_id:
            groups.append(agent_group(ticket.assigned_agent_id))
        await self.router.broadcast_many(groups, event_type, payload)

    async def queue_updated(self, stats: QueueStatistics) -> None:
        await self.router.broadcast(SUPERVISORS, EventType.QUEUE_UPDATE, stats.model_dump(mode="json"))

    async def agent_status(self, agent: Agent) -> None:
        await self.router.broadcast(SUPERVISORS, EventType.AGENT_STATUS, {
            "agent_id": agent.agent_id,
            "status": agent.status.value,
            "active_chats": agent.active_chats,
            "max_concurrent_chats": agent.max_concurrent_chats,
        })

    async def accept_rejected(self, agent_id: str, ticket_id: str, reason: str) -> None:
        await self.router.broadcast(agent_group(agent_id), EventType.TICKET_ACCEPT_REJECTED, {
            "ticket_id": ticket_id,
            "reason": reason,
        })


__all__ = ['TicketNotifier', 'ticket_summary', 'ticket_details']
