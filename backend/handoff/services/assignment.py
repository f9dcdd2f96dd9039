"""
Assignment engine.
Picks the best available agent for a waiting ticket and performs the
assignment as reserve-capacity-then-conditional-assign, so neither the
agent's capacity nor the ticket's single owner can be violated by
concurrent callers.

Version: 1.0.0
"""
import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Tuple

from ..exceptions import (
    AgentUnavailableError,
    AssignmentConflictError,
    InvalidTransitionError,
    NotAssignedAgentError,
)
from ..models.agent import Agent
from ..models.ticket import AssignmentMethod, Ticket, TicketStatus
from ..utils.telemetry import track_assignment
from .agent_pool import AgentPool, department_matches, language_matches
from .ticket_service import TicketService

if TYPE_CHECKING:
    from ..realtime.notifications import TicketNotifier

logger = logging.getLogger(__name__)

AGENT_DISCONNECTED = "agent disconnected"
SUPERVISOR_REASSIGNMENT = "supervisor reassignment"


class AssignmentEngine:
    """
    Scores candidates and assigns tickets.

    score = w_department * department_match + w_language * language_match
          + w_load * (1 - active_chats / max_concurrent_chats)

    Highest score wins; ties go to the longest-idle agent, then to the
    earliest joiner.
    """

    def __init__(
        self,
        tickets: TicketService,
        pool: AgentPool,
        notifier: Optional['TicketNotifier'] = None,
        weight_department: float = 0.5,
        weight_language: float = 0.3,
        weight_load: float = 0.2,
        auto_assign: bool = True
    ):
        """
        Initialize assignment engine.

        Args:
            tickets: Ticket state machine
            pool: Agent pool
            notifier: Routes rejection and status events
            weight_department: Weight of a department match
            weight_language: Weight of a language match
            weight_load: Weight of spare capacity
            auto_assign: Offer tickets to agents without waiting for an accept
        """
        self.tickets = tickets
        self.pool = pool
        self.notifier = notifier
        self.weight_department = weight_department
        self.weight_language = weight_language
        self.weight_load = weight_load
        self.auto_assign = auto_assign

        logger.info(
            f"AssignmentEngine initialized (weights={weight_department}/{weight_language}/{weight_load}, "
            f"auto_assign={auto_assign})"
        )

    # ===========================
    # Scoring
    # ===========================

    def score(self, agent: Agent, ticket: Ticket) -> float:
        # Agnostic agents are eligible but earn no match credit
        department_hit = 1.0 if (
            ticket.department and agent.department and department_matches(agent, ticket.department)
        ) else 0.0
        language_hit = 1.0 if agent.languages and language_matches(agent, ticket.language) else 0.0
        spare = 1.0 - agent.active_chats / agent.max_concurrent_chats

        return round(
            self.weight_department * department_hit
            + self.weight_language * language_hit
            + self.weight_load * spare,
            9
        )

    def rank(self, agents: List[Agent], ticket: Ticket) -> List[Agent]:
        """Candidates best first."""
        return sorted(
            agents,
            key=lambda agent: (-self.score(agent, ticket), agent.idle_since, agent.join_sequence)
        )

    # ===========================
    # Assignment
    # ===========================

    async def assign(self, ticket: Ticket) -> Optional[Ticket]:
        """
        Offer a waiting ticket to the best eligible agent.

        Returns:
            The assigned ticket, or None if it stays waiting
        """
        if ticket.status != TicketStatus.WAITING:
            return None

        candidates = self.rank(await self.pool.find_candidates(ticket.department, ticket.language), ticket)
        if not candidates:
            track_assignment("no_candidate")
            logger.debug(f"No eligible agent for ticket {ticket.id}; it stays waiting")
            return None

        for agent in candidates:
            reserved = await self.pool.reserve_capacity(agent.agent_id)
            if reserved is None:
                # Capacity taken since the lookup; try the next best
                continue

            try:
                assigned = await self.tickets.assign(ticket.id, agent.agent_id, AssignmentMethod.AUTO)
            except (AssignmentConflictError, InvalidTransitionError) as e:
                await self.pool.release_capacity(agent.agent_id)
                track_assignment("conflict")
                logger.info(f"Ticket {ticket.id} not assigned to {agent.agent_id}: {e.message}")
                return None

            track_assignment("assigned")
            return assigned

        track_assignment("no_capacity")
        return None

    async def dispatch_waiting(self) -> List[Ticket]:
        """
        Offer waiting tickets in queue order until agents run out of room.

        A ticket nobody can take (for example, no agent speaks its
        language) does not block the tickets behind it.
        """
        if not self.auto_assign:
            return []

        assigned: List[Ticket] = []
        for ticket in await self.tickets.list_waiting():
            if not await self.pool.has_spare_capacity():
                break
            result = await self.assign(ticket)
            if result is not None:
                assigned.append(result)

        if assigned:
            logger.info(f"Dispatched {len(assigned)} waiting ticket(s)")
        return assigned

    async def on_ticket_created(self, ticket: Ticket) -> Optional[Ticket]:
        if not self.auto_assign:
            return None
        return await self.assign(ticket)

    async def accept(self, ticket_id: str, agent_id: str) -> Ticket:
        """
        Manual accept from an agent dashboard.

        Raises:
            AgentUnavailableError: The agent has no free slot
            AssignmentConflictError: Another agent took the ticket first
            InvalidTransitionError: The ticket is closed
        """
        if await self.pool.reserve_capacity(agent_id, require_available=False) is None:
            reason = f"Agent {agent_id} has no free chat slot"
            await self._reject(agent_id, ticket_id, reason)
            raise AgentUnavailableError(reason)

        try:
            ticket = await self.tickets.assign(ticket_id, agent_id, AssignmentMethod.MANUAL)
        except (AssignmentConflictError, InvalidTransitionError) as e:
            await self.pool.release_capacity(agent_id)
            track_assignment("conflict")
            await self._reject(agent_id, ticket_id, e.message)
            raise
        except Exception:
            await self.pool.release_capacity(agent_id)
            raise

        track_assignment("accepted")
        return ticket

    async def _reject(self, agent_id: str, ticket_id: str, reason: str) -> None:
        logger.info(f"Accept of {ticket_id} by {agent_id} rejected: {reason}")
        if self.notifier is not None:
            await self.notifier.accept_rejected(agent_id, ticket_id, reason)

    async def transfer(
        self,
        ticket_id: str,
        from_agent_id: str,
        to_agent_id: str,
        reason: str = "transferred"
    ) -> Ticket:
        """Hand an assigned ticket to another agent with a free slot."""
        if await self.pool.reserve_capacity(to_agent_id, require_available=False) is None:
            raise AgentUnavailableError(f"Agent {to_agent_id} cannot take another chat")

        try:
            ticket = await self.tickets.transfer(ticket_id, from_agent_id, to_agent_id, reason)
        except Exception:
            await self.pool.release_capacity(to_agent_id)
            raise

        await self.pool.release_capacity(from_agent_id)
        return ticket

    async def reassign(self, ticket_id: str, to_agent_id: str, reason: str = SUPERVISOR_REASSIGNMENT) -> Ticket:
        """
        Supervisor override: put an open ticket on ``to_agent_id``.

        An assigned ticket is transferred from its current agent, a waiting
        one is assigned directly. The target's capacity still applies, its
        availability status does not.

        Raises:
            AgentNotFoundError: The target is not registered
            AgentUnavailableError: The target is offline or full
            InvalidTransitionError: The ticket is closed
        """
        await self.pool.require_agent(to_agent_id)
        ticket = await self.tickets.require_ticket(ticket_id)

        if ticket.status == TicketStatus.ASSIGNED:
            ticket = await self.transfer(ticket_id, ticket.assigned_agent_id, to_agent_id, reason)
        elif ticket.status == TicketStatus.WAITING:
            if await self.pool.reserve_capacity(to_agent_id, require_available=False) is None:
                raise AgentUnavailableError(f"Agent {to_agent_id} cannot take another chat")
            try:
                ticket = await self.tickets.assign(ticket_id, to_agent_id, AssignmentMethod.MANUAL)
            except Exception:
                await self.pool.release_capacity(to_agent_id)
                raise
        else:
            raise InvalidTransitionError(ticket.id, ticket.status.value, TicketStatus.ASSIGNED.value)

        track_assignment("reassigned")
        logger.info(f"Ticket {ticket.id} reassigned to {to_agent_id}: {reason}")
        return ticket

    async def resolve(self, ticket_id: str, agent_id: str, notes: Optional[str] = None) -> Ticket:
        ticket = await self.tickets.resolve(ticket_id, agent_id, notes)
        await self.pool.release_capacity(agent_id)
        await self.dispatch_waiting()
        return ticket

    async def cancel(self, ticket_id: str, reason: str = "cancelled") -> Ticket:
        ticket, released_agent = await self.tickets.cancel(ticket_id, reason)
        if released_agent is not None:
            await self.pool.release_capacity(released_agent)
            await self.dispatch_waiting()
        return ticket

    async def return_to_queue(self, ticket_id: str, agent_id: str, reason: str) -> Ticket:
        ticket = await self.tickets.unassign(ticket_id, reason, agent_id=agent_id)
        await self.pool.release_capacity(agent_id)
        await self.dispatch_waiting()
        return ticket

    # ===========================
    # Agent departure
    # ===========================

    async def handle_agent_offline(self, agent_id: str, reason: str = AGENT_DISCONNECTED) -> List[Ticket]:
        """Return every ticket assigned to ``agent_id`` to the waiting queue."""
        returned: List[Ticket] = []
        for ticket in await self.tickets.tickets_for_agent(agent_id):
            try:
                returned.append(await self.tickets.unassign(ticket.id, reason, agent_id=agent_id))
            except (InvalidTransitionError, NotAssignedAgentError):
                # Resolved or moved on while we were iterating
                continue
            await self.pool.release_capacity(agent_id)

        if returned:
            logger.warning(f"Returned {len(returned)} ticket(s) of {agent_id} to the queue: {reason}")
            await self.dispatch_waiting()
        return returned

    async def agent_left(self, agent_id: str) -> List[Ticket]:
        agent = await self.pool.leave(agent_id)
        if agent is None:
            return []
        if self.notifier is not None:
            await self.notifier.agent_status(agent)
        return await self.handle_agent_offline(agent_id)

    async def sweep_heartbeats(self, now: Optional[datetime] = None) -> List[Tuple[str, List[Ticket]]]:
        """
        Mark agents with too many missed heartbeats offline and requeue their tickets.

        Returns:
            (agent_id, returned tickets) for every agent this call took offline
        """
        now = now or self.pool.clock()
        cutoff = now - self.pool.heartbeat_timeout
        results = []

        for agent in await self.pool.find_stale_agents(now):
            try:
                marked = await self.pool.mark_offline(agent.agent_id, stale_before=cutoff)
                if marked is None:
                    continue
                if self.notifier is not None:
                    await self.notifier.agent_status(marked)
                results.append((agent.agent_id, await self.handle_agent_offline(agent.agent_id)))
            except Exception as e:
                logger.error(f"Heartbeat sweep failed for agent {agent.agent_id}: {e}", exc_info=True)

        return results

    async def run_heartbeat_monitor(self, shutdown_event: asyncio.Event, interval: float) -> None:
        """Background loop calling sweep_heartbeats every ``interval`` seconds."""
        logger.info(f"✓ Heartbeat monitor started (interval={interval}s)")
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.sweep_heartbeats()
            except Exception as e:
                logger.error(f"Heartbeat sweep error: {e}", exc_info=True)

        logger.info("Heartbeat monitor stopped")


__all__ = ['AssignmentEngine', 'AGENT_DISCONNECTED']
