"""
Ticket state machine.
Every transition is one conditional update of the ticket document in the
coordination store; index sets are maintained after the update and repaired
lazily by readers.

Version: 1.0.0
"""
import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Set, Tuple

from ..exceptions import (
    AssignmentConflictError,
    FeedbackError,
    InvalidTransitionError,
    NotAssignedAgentError,
    TicketNotFoundError,
)
from ..models.session import Message
from ..models.supervisor import AgentPerformance
from ..models.ticket import (
    AssignmentMethod,
    AssignmentRecord,
    DeadlineKind,
    DeadlineStatus,
    EmergencyResponse,
    Feedback,
    HandoffTrigger,
    PriorityLevel,
    QueueStatistics,
    SLAStatus,
    Ticket,
    TicketStatus,
)
from ..store import CoordinationStore, Document
from ..utils.clock import Clock, utcnow
from ..utils.telemetry import (
    track_emergency_response,
    track_ticket_created,
    track_ticket_transition,
    update_waiting_tickets,
)
from .priority import PriorityEngine

if TYPE_CHECKING:
    from ..realtime.notifications import TicketNotifier

logger = logging.getLogger(__name__)

# Store keys
TICKET_KEY = "ticket:{}"
OPEN_KEY = "tickets:open"
WAITING_KEY = "tickets:waiting"
SEQUENCE_KEY = "tickets:sequence"
AGENT_KEY = "tickets:agent:{}"
OWNER_KEY = "tickets:owner:{}"
CONVERSATION_KEY = "tickets:conversation:{}"
HANDLED_KEY = "tickets:handled:{}"
RESOLVED_KEY = "tickets:resolved"

ALLOWED_TRANSITIONS: Dict[TicketStatus, Set[TicketStatus]] = {
    TicketStatus.WAITING: {TicketStatus.ASSIGNED, TicketStatus.CANCELLED},
    TicketStatus.ASSIGNED: {
        TicketStatus.WAITING,
        TicketStatus.ASSIGNED,
        TicketStatus.RESOLVED,
        TicketStatus.CANCELLED,
    },
    TicketStatus.RESOLVED: set(),
    TicketStatus.CANCELLED: set(),
}

# Seconds a conversation claim may exist before its ticket document
PENDING_CLAIM_TTL = 30

# Minutes of expected wait per queue position
FAST_LANE_MINUTES = 2
STANDARD_MINUTES = 5

# Percent of the current deadline used before a ticket reads as warning or critical
DEADLINE_WARNING_PERCENT = 60
DEADLINE_CRITICAL_PERCENT = 80


def check_transition(ticket: Ticket, target: TicketStatus) -> None:
    """Raise InvalidTransitionError unless ``ticket`` may move to ``target``."""
    if target not in ALLOWED_TRANSITIONS[ticket.status]:
        raise InvalidTransitionError(ticket.id, ticket.status.value, target.value)


class TicketService:
    """
    Lifecycle of handoff tickets.

    Tickets are never deleted. The ticket document is the source of truth;
    the open/waiting/agent/owner indexes follow it and stale index entries
    are dropped when a reader notices them.
    """

    def __init__(
        self,
        store: CoordinationStore,
        priority: Optional[PriorityEngine] = None,
        notifier: Optional['TicketNotifier'] = None,
        clock: Clock = utcnow
    ):
        """
        Initialize ticket service.

        Args:
            store: Coordination store
            priority: Scoring and SLA engine
            notifier: Routes lifecycle events; events are skipped when None
            clock: Source of the current time
        """
        self.store = store
        self.priority = priority or PriorityEngine()
        self.notifier = notifier
        self.clock = clock

        logger.info("TicketService initialized")

    # ===========================
    # Internal helpers
    # ===========================

    async def _transition(
        self,
        ticket_id: str,
        change: Callable[[Ticket], None]
    ) -> Tuple[Ticket, Ticket]:
        """
        Apply ``change`` to the stored ticket as one conditional update.

        ``change`` validates the current state and mutates the ticket in
        place; any exception it raises aborts the update.

        Returns:
            (ticket before, ticket after)
        """
        now = self.clock()
        before: Dict[str, Ticket] = {}

        def mutator(current: Optional[Document]) -> Optional[Document]:
            if current is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            ticket = Ticket.from_dict(current)
            before["ticket"] = ticket.model_copy(deep=True)
            change(ticket)
            ticket.updated_at = now
            return ticket.checked()

        written = await self.store.update(TICKET_KEY.format(ticket_id), mutator)
        previous, updated = before["ticket"], Ticket.from_dict(written)

        if previous.status != updated.status or updated.status == TicketStatus.ASSIGNED:
            track_ticket_transition(previous.status.value, updated.status.value)
        return previous, updated

    @staticmethod
    def _close_assignment(ticket: Ticket, now, reason: Optional[str]) -> None:
        record = ticket.current_assignment()
        if record is not None:
            record.unassigned_at = now
            record.reason = reason

    async def _release_conversation(self, ticket: Ticket) -> None:
        await self.store.release_token(CONVERSATION_KEY.format(ticket.conversation_ref), ticket.id)

    async def _publish_queue_stats(self) -> None:
        stats = await self.get_queue_statistics()
        update_waiting_tickets(stats.waiting_tickets)
        if self.notifier is not None:
            await self.notifier.queue_updated(stats)

    # ===========================
    # Creation & lookup
    # ===========================

    async def create_ticket(
        self,
        owner_id: str,
        conversation_ref: str,
        reason: str = "",
        trigger: HandoffTrigger = HandoffTrigger.EXPLICIT,
        context: Sequence[Message] = (),
        language: str = "en",
        department: Optional[str] = None,
        severity: Optional[int] = None,
        wait_seconds: float = 0.0,
        scan_text: Optional[str] = None
    ) -> Tuple[Ticket, bool]:
        """
        Create a ticket for a handoff request.

        A conversation has at most one open ticket; asking again returns
        the existing one.

        Args:
            owner_id: Customer identity
            conversation_ref: Conversation (session) the ticket belongs to
            reason: Free-text reason given for the handoff
            trigger: What caused the handoff
            context: Recent messages, frozen into the ticket
            language: Conversation language
            department: Target department, if known
            severity: Stated severity 1..5
            wait_seconds: Time the customer already spent waiting
            scan_text: Text scanned for emergency keywords (defaults to reason)

        Returns:
            (ticket, created) where created is False for an existing ticket
        """
        ticket_id = f"tkt_{uuid.uuid4().hex}"
        claim_key = CONVERSATION_KEY.format(conversation_ref)

        if not await self.store.acquire_token(claim_key, ticket_id, PENDING_CLAIM_TTL):
            holder_id = await self.store.get_token(claim_key)
            holder = await self.get_ticket(holder_id) if holder_id else None

            if holder is not None and holder.is_open:
                logger.info(f"Conversation {conversation_ref} already has open ticket {holder.id}")
                return holder, False
            if holder_id is not None and holder is None:
                raise AssignmentConflictError(
                    ticket_id, f"Conversation {conversation_ref} is being handed off concurrently"
                )

            # Claim left behind by a closed ticket
            if holder_id is not None:
                await self.store.release_token(claim_key, holder_id)
            if not await self.store.acquire_token(claim_key, ticket_id, PENDING_CLAIM_TTL):
                raise AssignmentConflictError(
                    ticket_id, f"Conversation {conversation_ref} is being handed off concurrently"
                )

        now = self.clock()
        sequence = await self.store.incr(SEQUENCE_KEY)
        assessment = self.priority.assess(
            scan_text if scan_text is not None else reason,
            department=department,
            severity=severity,
            wait_seconds=wait_seconds
        )

        ticket = Ticket(
            id=ticket_id,
            owner_id=owner_id,
            conversation_ref=conversation_ref,
            priority_score=assessment.score,
            priority_level=assessment.level,
            reason=reason[:500],
            trigger=trigger,
            department=department,
            language=language,
            severity=severity,
            context_snapshot=tuple(context),
            sla=self.priority.build_sla(assessment.level, now),
            sequence=sequence,
            created_at=now,
            updated_at=now
        )

        await self.store.put(TICKET_KEY.format(ticket.id), ticket.to_dict())
        await self.store.renew_token(claim_key, ticket.id, None)
        await self.store.set_add(OPEN_KEY, ticket.id)
        await self.store.set_add(OWNER_KEY.format(owner_id), ticket.id)
        await self.store.sorted_add(WAITING_KEY, ticket.id, ticket.queue_score)

        track_ticket_created(ticket.priority_level.value, trigger.value)
        logger.info(
            f"Created ticket {ticket.id} for {owner_id} "
            f"(priority={ticket.priority_level.value}, score={ticket.priority_score}, trigger={trigger.value})"
        )

        if self.notifier is not None:
            position = await self.get_queue_position(ticket.id)
            await self.notifier.ticket_created(
                ticket, position, self.estimate_wait_minutes(position or 1, ticket.priority_level)
            )
            await self._publish_queue_stats()

        return ticket, True

    async def get_ticket(self, ticket_id: str) -> Optional[Ticket]:
        document = await self.store.get(TICKET_KEY.format(ticket_id))
        return Ticket.from_dict(document) if document is not None else None

    async def require_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def open_ticket_for_conversation(self, conversation_ref: str) -> Optional[Ticket]:
        ticket_id = await self.store.get_token(CONVERSATION_KEY.format(conversation_ref))
        if ticket_id is None:
            return None
        ticket = await self.get_ticket(ticket_id)
        return ticket if ticket is not None and ticket.is_open else None

    # ===========================
    # Transitions
    # ===========================

    async def assign(
        self,
        ticket_id: str,
        agent_id: str,
        method: AssignmentMethod = AssignmentMethod.AUTO
    ) -> Ticket:
        """
        Assign a waiting ticket, only if it is still waiting.

        Raises:
            AssignmentConflictError: Someone else assigned it first
            InvalidTransitionError: The ticket is closed
        """
        now = self.clock()

        def change(ticket: Ticket) -> None:
            if ticket.status == TicketStatus.ASSIGNED:
                raise AssignmentConflictError(
                    ticket.id, f"Ticket {ticket.id} is already assigned to another agent"
                )
            if ticket.status != TicketStatus.WAITING:
                raise InvalidTransitionError(ticket.id, ticket.status.value, TicketStatus.ASSIGNED.value)

            ticket.status = TicketStatus.ASSIGNED
            ticket.assigned_agent_id = agent_id
            ticket.assigned_at = now
            if ticket.responded_at is None:
                ticket.responded_at = now
            ticket.assignment_history.append(
                AssignmentRecord(agent_id=agent_id, assigned_at=now, method=method)
            )

        _, ticket = await self._transition(ticket_id, change)

        await self.store.sorted_remove(WAITING_KEY, ticket.id)
        await self.store.set_add(AGENT_KEY.format(agent_id), ticket.id)
        await self.store.set_add(HANDLED_KEY.format(agent_id), ticket.id)
        logger.info(f"Ticket {ticket.id} assigned to {agent_id} ({method.value})")

        if self.notifier is not None:
            await self.notifier.ticket_assigned(ticket, method)
            await self._publish_queue_stats()
        return ticket

    async def unassign(self, ticket_id: str, reason: str, agent_id: Optional[str] = None) -> Ticket:
        """
        Return an assigned ticket to the waiting queue.

        The ticket keeps its original sequence, so it goes back to its
        place among tickets of the same level.
        """
        now = self.clock()

        def change(ticket: Ticket) -> None:
            check_transition(ticket, TicketStatus.WAITING)
            if agent_id is not None and ticket.assigned_agent_id != agent_id:
                raise NotAssignedAgentError(f"Ticket {ticket.id} is not assigned to {agent_id}")

            self._close_assignment(ticket, now, reason)
            ticket.status = TicketStatus.WAITING
            ticket.assigned_agent_id = None
            ticket.assigned_at = None

        previous, ticket = await self._transition(ticket_id, change)
        previous_agent = previous.assigned_agent_id

        await self.store.set_remove(AGENT_KEY.format(previous_agent), ticket.id)
        await self.store.sorted_add(WAITING_KEY, ticket.id, ticket.queue_score)
        logger.info(f"Ticket {ticket.id} returned to queue from {previous_agent}: {reason}")

        if self.notifier is not None:
            await self.notifier.ticket_unassigned(ticket, previous_agent, reason)
            await self._publish_queue_stats()
        return ticket

    async def transfer(
        self,
        ticket_id: str,
        from_agent_id: str,
        to_agent_id: str,
        reason: str = "transferred"
    ) -> Ticket:
        """Move an assigned ticket to another agent, keeping its context snapshot."""
        now = self.clock()

        def change(ticket: Ticket) -> None:
            check_transition(ticket, TicketStatus.ASSIGNED)
            if ticket.assigned_agent_id != from_agent_id:
                raise NotAssignedAgentError(f"Ticket {ticket.id} is not assigned to {from_agent_id}")
            if to_agent_id == from_agent_id:
                raise AssignmentConflictError(ticket.id, f"Ticket {ticket.id} is already assigned to {to_agent_id}")

            self._close_assignment(ticket, now, reason)
            ticket.assigned_agent_id = to_agent_id
            ticket.assigned_at = now
            ticket.assignment_history.append(
                AssignmentRecord(
                    agent_id=to_agent_id,
                    assigned_at=now,
                    reason=reason,
                    method=AssignmentMethod.TRANSFER
                )
            )

        _, ticket = await self._transition(ticket_id, change)

        await self.store.set_remove(AGENT_KEY.format(from_agent_id), ticket.id)
        await self.store.set_add(AGENT_KEY.format(to_agent_id), ticket.id)
        await self.store.set_add(HANDLED_KEY.format(to_agent_id), ticket.id)
        logger.info(f"Ticket {ticket.id} transferred {from_agent_id} -> {to_agent_id}: {reason}")

        if self.notifier is not None:
            await self.notifier.ticket_transferred(ticket, from_agent_id, to_agent_id, reason)
        return ticket

    async def resolve(self, ticket_id: str, agent_id: str, notes: Optional[str] = None) -> Ticket:
        """
        Resolve a ticket. Only the assigned agent may do this.

        Raises:
            InvalidTransitionError: The ticket is not assigned
            NotAssignedAgentError: The ticket belongs to another agent
        """
        now = self.clock()

        def change(ticket: Ticket) -> None:
            if ticket.status != TicketStatus.ASSIGNED:
                raise InvalidTransitionError(ticket.id, ticket.status.value, TicketStatus.RESOLVED.value)
            if ticket.assigned_agent_id != agent_id:
                raise NotAssignedAgentError(f"Ticket {ticket.id} is not assigned to {agent_id}")

            self._close_assignment(ticket, now, "resolved")
            ticket.status = TicketStatus.RESOLVED
            ticket.assigned_agent_id = None
            ticket.resolved_at = now
            ticket.resolved_by = agent_id
            ticket.resolution_notes = notes[:1000] if notes else None
            ticket.feedback_requested = True

        _, ticket = await self._transition(ticket_id, change)

        await self.store.set_remove(OPEN_KEY, ticket.id)
        await self.store.set_remove(AGENT_KEY.format(agent_id), ticket.id)
        await self.store.sorted_add(RESOLVED_KEY, ticket.id, ticket.resolved_at.timestamp())
        await self._release_conversation(ticket)
        logger.info(f"Ticket {ticket.id} resolved by {agent_id}")

        if self.notifier is not None:
            await self.notifier.ticket_resolved(ticket, agent_id)
            await self._publish_queue_stats()
        return ticket

    async def cancel(self, ticket_id: str, reason: str = "cancelled") -> Tuple[Ticket, Optional[str]]:
        """
        Cancel an open ticket.

        Returns:
            (ticket, agent id the ticket was assigned to, if any)
        """
        now = self.clock()

        def change(ticket: Ticket) -> None:
            check_transition(ticket, TicketStatus.CANCELLED)
            self._close_assignment(ticket, now, reason)
            ticket.status = TicketStatus.CANCELLED
            ticket.assigned_agent_id = None
            ticket.cancelled_at = now
            ticket.cancel_reason = reason[:500]

        previous, ticket = await self._transition(ticket_id, change)
        released_agent = previous.assigned_agent_id

        await self.store.set_remove(OPEN_KEY, ticket.id)
        await self.store.sorted_remove(WAITING_KEY, ticket.id)
        if released_agent is not None:
            await self.store.set_remove(AGENT_KEY.format(released_agent), ticket.id)
        await self._release_conversation(ticket)
        logger.info(f"Ticket {ticket.id} cancelled: {reason}")

        if self.notifier is not None:
            await self.notifier.ticket_cancelled(ticket, released_agent, reason)
            await self._publish_queue_stats()
        return ticket, released_agent

    async def escalate(self, ticket_id: str, reason: str) -> Ticket:
        """Raise the escalation level of an open ticket and bump its priority."""

        def change(ticket: Ticket) -> None:
            if not ticket.is_open:
                raise InvalidTransitionError(ticket.id, ticket.status.value, "escalated")
            self._escalate_in_place(ticket)

        _, ticket = await self._transition(ticket_id, change)
        await self._after_escalation(ticket, reason)
        return ticket

    def _escalate_in_place(self, ticket: Ticket) -> None:
        ticket.sla.escalation_level += 1
        ticket.priority_level = PriorityEngine.escalated_level(
            ticket.priority_level, ticket.sla.escalation_level
        )

    async def _after_escalation(self, ticket: Ticket, reason: str) -> None:
        if ticket.status == TicketStatus.WAITING:
            await self.store.sorted_add(WAITING_KEY, ticket.id, ticket.queue_score)
        logger.warning(
            f"Ticket {ticket.id} escalated to level {ticket.sla.escalation_level} "
            f"(priority={ticket.priority_level.value}): {reason}"
        )
        if self.notifier is not None:
            await self.notifier.ticket_escalated(ticket, reason)

    async def record_sla_notification(
        self,
        ticket_id: str,
        kind: DeadlineKind,
        threshold: float,
        escalate: bool = False
    ) -> Optional[Ticket]:
        """
        Advance the notification checkpoint of one deadline.

        Only the caller whose update moves the checkpoint forward gets the
        ticket back; everyone else gets None and must not emit anything.
        With ``escalate`` the same update marks the ticket overdue and
        raises its escalation level.
        """
        now = self.clock()

        def mutator(current: Optional[Document]) -> Optional[Document]:
            if current is None:
                return None
            ticket = Ticket.from_dict(current)
            if not ticket.is_open or ticket.sla.notified(kind) >= threshold:
                return None
            ticket.sla.last_notified_threshold[kind.value] = threshold
            if escalate:
                ticket.sla.is_overdue = True
                self._escalate_in_place(ticket)
            ticket.updated_at = now
            return ticket.checked()

        written = await self.store.update(TICKET_KEY.format(ticket_id), mutator)
        if written is None:
            return None

        ticket = Ticket.from_dict(written)
        if escalate:
            await self._after_escalation(ticket, f"{kind.value} deadline breached")
        return ticket

    async def submit_feedback(
        self,
        ticket_id: str,
        owner_id: str,
        rating: int,
        comment: Optional[str] = None
    ) -> Ticket:
        """
        Attach the customer's rating to a resolved ticket, once.

        Raises:
            FeedbackError: Wrong owner, ticket not resolved, or already rated
        """
        feedback = Feedback(rating=rating, comment=comment, submitted_at=self.clock())

        def change(ticket: Ticket) -> None:
            if ticket.owner_id != owner_id:
                raise FeedbackError(f"Ticket {ticket.id} does not belong to {owner_id}", code="OWNER_MISMATCH")
            if ticket.status != TicketStatus.RESOLVED:
                raise FeedbackError(f"Ticket {ticket.id} is not resolved")
            if ticket.feedback is not None:
                raise FeedbackError(f"Feedback already submitted for ticket {ticket.id}")
            ticket.feedback = feedback

        _, ticket = await self._transition(ticket_id, change)
        logger.info(f"Feedback {rating}/5 recorded for ticket {ticket.id}")
        return ticket

    async def track_emergency_response(self, ticket_id: str, agent_id: str) -> Ticket:
        """
        Record the first response of the assigned agent on an urgent ticket.

        Only high and emergency tickets are tracked and only the first call
        counts; otherwise the ticket comes back unchanged.

        Raises:
            InvalidTransitionError: The ticket is not assigned
            NotAssignedAgentError: The ticket belongs to another agent
        """
        now = self.clock()

        def mutator(current: Optional[Document]) -> Optional[Document]:
            if current is None:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            ticket = Ticket.from_dict(current)
            if ticket.status != TicketStatus.ASSIGNED:
                raise InvalidTransitionError(ticket.id, ticket.status.value, "responded")
            if ticket.assigned_agent_id != agent_id:
                raise NotAssignedAgentError(f"Ticket {ticket.id} is not assigned to {agent_id}")
            if not ticket.is_urgent or ticket.emergency_response is not None:
                return None

            ticket.emergency_response = EmergencyResponse(
                agent_id=agent_id,
                responded_at=now,
                response_seconds=max((now - ticket.created_at).total_seconds(), 0.0),
                within_sla=now <= ticket.sla.response_deadline
            )
            ticket.updated_at = now
            return ticket.checked()

        written = await self.store.update(TICKET_KEY.format(ticket_id), mutator)
        if written is None:
            return await self.require_ticket(ticket_id)

        ticket = Ticket.from_dict(written)
        response = ticket.emergency_response
        track_emergency_response(ticket.priority_level.value, response.response_seconds)
        logger.info(
            f"Emergency response on {ticket.id} by {agent_id} after "
            f"{response.response_seconds:.1f}s (within_sla={response.within_sla})"
        )
        return ticket

    # ===========================
    # Queries
    # ===========================

    async def _load_indexed(
        self,
        ticket_ids: Sequence[str],
        keep: Callable[[Ticket], bool]
    ) -> Tuple[List[Ticket], List[str]]:
        tickets: List[Ticket] = []
        stale: List[str] = []
        for ticket_id in ticket_ids:
            ticket = await self.get_ticket(ticket_id)
            if ticket is not None and keep(ticket):
                tickets.append(ticket)
            else:
                stale.append(ticket_id)
        return tickets, stale

    async def list_waiting(self, limit: Optional[int] = None) -> List[Ticket]:
        """Waiting tickets in offer order: higher level first, FIFO within a level."""
        ticket_ids = await self.store.sorted_range(WAITING_KEY)
        tickets, stale = await self._load_indexed(
            ticket_ids, lambda t: t.status == TicketStatus.WAITING
        )
        for ticket_id in stale:
            await self.store.sorted_remove(WAITING_KEY, ticket_id)

        return tickets[:limit] if limit is not None else tickets

    async def list_open(self) -> List[Ticket]:
        ticket_ids = sorted(await self.store.set_members(OPEN_KEY))
        tickets, stale = await self._load_indexed(ticket_ids, lambda t: t.is_open)
        if stale:
            await self.store.set_remove(OPEN_KEY, *stale)
        return tickets

    async def tickets_for_agent(self, agent_id: str) -> List[Ticket]:
        """Tickets currently assigned to ``agent_id``."""
        key = AGENT_KEY.format(agent_id)
        ticket_ids = sorted(await self.store.set_members(key))
        tickets, stale = await self._load_indexed(
            ticket_ids, lambda t: t.assigned_agent_id == agent_id
        )
        if stale:
            await self.store.set_remove(key, *stale)
        return tickets

    async def tickets_for_owner(self, owner_id: str) -> List[Ticket]:
        ticket_ids = await self.store.set_members(OWNER_KEY.format(owner_id))
        tickets, _ = await self._load_indexed(sorted(ticket_ids), lambda t: True)
        return sorted(tickets, key=lambda t: t.created_at)

    async def get_queue_position(self, ticket_id: str) -> Optional[int]:
        """1-based position in the waiting queue, or None if not waiting."""
        rank = await self.store.sorted_rank(WAITING_KEY, ticket_id)
        return rank + 1 if rank is not None else None

    @staticmethod
    def estimate_wait_minutes(position: int, level: PriorityLevel) -> int:
        per_position = (
            FAST_LANE_MINUTES
            if level in (PriorityLevel.EMERGENCY, PriorityLevel.HIGH)
            else STANDARD_MINUTES
        )
        return max(position, 1) * per_position

    async def get_queue_statistics(self) -> QueueStatistics:
        now = self.clock()
        stats = QueueStatistics()
        waits: List[float] = []

        for ticket in await self.list_open():
            stats.total_tickets += 1
            if ticket.status == TicketStatus.WAITING:
                stats.waiting_tickets += 1
                stats.queue_by_priority[ticket.priority_level.value] += 1
                waits.append((now - ticket.created_at).total_seconds())
            elif ticket.status == TicketStatus.ASSIGNED:
                stats.assigned_tickets += 1

        if waits:
            stats.average_wait_seconds = round(sum(waits) / len(waits), 1)
            stats.longest_wait_seconds = round(max(waits), 1)
        return stats

    # ===========================
    # Supervisor & emergency views
    # ===========================

    async def count_created(self) -> int:
        """Tickets ever created; the sequence counter never goes back."""
        return await self.store.get_counter(SEQUENCE_KEY)

    async def resolved_since(self, since: datetime) -> List[Ticket]:
        """Tickets resolved at or after ``since``, newest first."""
        resolved: List[Ticket] = []
        for ticket_id in reversed(await self.store.sorted_range(RESOLVED_KEY)):
            ticket = await self.get_ticket(ticket_id)
            if ticket is None or ticket.resolved_at is None:
                continue
            if ticket.resolved_at < since:
                break
            resolved.append(ticket)
        return resolved

    async def tickets_handled_by(self, agent_id: str) -> List[Ticket]:
        """Every ticket ``agent_id`` was ever assigned, open or closed."""
        ticket_ids = await self.store.set_members(HANDLED_KEY.format(agent_id))
        tickets, _ = await self._load_indexed(sorted(ticket_ids), lambda t: True)
        return tickets

    async def agent_performance(self, agent_id: str, since: Optional[datetime] = None) -> AgentPerformance:
        """
        Outcomes of the tickets ``agent_id`` took on since ``since``.

        A ticket counts as resolved for the agent that resolved it; handle
        time runs from that agent's last assignment to the resolution, and
        the customer's rating is credited to the same agent.
        """
        performance = AgentPerformance(agent_id=agent_id)
        handle_times: List[float] = []
        ratings: List[int] = []

        for ticket in await self.tickets_handled_by(agent_id):
            stints = [
                record for record in ticket.assignment_history
                if record.agent_id == agent_id and (since is None or record.assigned_at >= since)
            ]
            if not stints:
                continue
            performance.tickets_assigned += 1

            if ticket.status != TicketStatus.RESOLVED or ticket.resolved_by != agent_id:
                continue
            performance.tickets_resolved += 1
            handle_times.append((ticket.resolved_at - stints[-1].assigned_at).total_seconds())
            if ticket.feedback is not None:
                ratings.append(ticket.feedback.rating)

        if performance.tickets_assigned:
            performance.resolution_rate = round(
                performance.tickets_resolved / performance.tickets_assigned * 100, 1
            )
        if handle_times:
            performance.average_handle_seconds = round(sum(handle_times) / len(handle_times), 1)
        if ratings:
            performance.average_rating = round(sum(ratings) / len(ratings), 1)
            performance.feedback_count = len(ratings)
        return performance

    def sla_status(self, ticket: Ticket, now: Optional[datetime] = None) -> SLAStatus:
        """
        Where ``ticket`` stands against its response deadline until an agent
        responds, and against its resolution deadline after that.
        """
        now = now or self.clock()
        kind = DeadlineKind.RESPONSE if ticket.responded_at is None else DeadlineKind.RESOLUTION
        deadline = ticket.sla.deadline(kind)
        window = (deadline - ticket.created_at).total_seconds()
        elapsed = (now - ticket.created_at).total_seconds()
        percent = elapsed / window * 100 if window > 0 else 100.0

        if percent >= 100:
            status = DeadlineStatus.EXCEEDED
        elif percent >= DEADLINE_CRITICAL_PERCENT:
            status = DeadlineStatus.CRITICAL
        elif percent >= DEADLINE_WARNING_PERCENT:
            status = DeadlineStatus.WARNING
        else:
            status = DeadlineStatus.SAFE

        return SLAStatus(
            kind=kind,
            status=status,
            deadline=deadline,
            seconds_remaining=round(max((deadline - now).total_seconds(), 0.0), 1),
            percent_elapsed=round(min(max(percent, 0.0), 100.0), 1)
        )

    async def get_emergency_tickets(self) -> List[Tuple[Ticket, SLAStatus]]:
        """Open high and emergency tickets, most urgent level first, oldest first within a level."""
        now = self.clock()
        urgent = [ticket for ticket in await self.list_open() if ticket.is_urgent]
        urgent.sort(key=lambda t: (-t.priority_level.rank, t.created_at, t.sequence))
        return [(ticket, self.sla_status(ticket, now)) for ticket in urgent]


__all__ = ['TicketService', 'ALLOWED_TRANSITIONS', 'check_transition']
