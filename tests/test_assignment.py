"""
Tests for the assignment engine.
"""
import asyncio
from datetime import datetime, timezone

import pytest

from handoff.exceptions import (
    AgentNotFoundError,
    AgentUnavailableError,
    AssignmentConflictError,
    InvalidTransitionError,
)
from handoff.models.agent import Agent, AgentStatus
from handoff.models.ticket import AssignmentMethod, PriorityLevel, SLAData, Ticket, TicketStatus
from handoff.realtime.notifications import TicketNotifier
from handoff.realtime.router import SUPERVISORS, agent_group
from handoff.services.agent_pool import AgentPool
from handoff.services.assignment import AssignmentEngine
from handoff.services.ticket_service import TicketService


# ===========================
# Fixtures
# ===========================

@pytest.fixture
def notifier(router) -> TicketNotifier:
    return TicketNotifier(router)


@pytest.fixture
def tickets(store, clock, notifier) -> TicketService:
    return TicketService(store, notifier=notifier, clock=clock)


@pytest.fixture
def pool(store, clock) -> AgentPool:
    return AgentPool(store, clock=clock)


@pytest.fixture
def engine(tickets, pool, notifier) -> AssignmentEngine:
    return AssignmentEngine(tickets, pool, notifier)


async def new_ticket(tickets, conversation, **kwargs):
    ticket, _ = await tickets.create_ticket("user-1", conversation, reason="question", **kwargs)
    return ticket


# ===========================
# Selection Tests
# ===========================

async def test_full_agent_is_never_selected(engine, tickets, pool):
    await pool.register("agent-a", max_concurrent_chats=1)
    await pool.register("agent-b", max_concurrent_chats=1)
    await pool.reserve_capacity("agent-a")

    assigned = await engine.assign(await new_ticket(tickets, "sess-1"))

    assert assigned.assigned_agent_id == "agent-b"
    assert (await pool.get_agent("agent-a")).active_chats == 1


async def test_department_match_wins(engine, tickets, pool):
    await pool.register("generalist")
    await pool.register("billing", department="Billing")

    assigned = await engine.assign(await new_ticket(tickets, "sess-1", department="billing"))

    assert assigned.assigned_agent_id == "billing"


async def test_language_match_wins(engine, tickets, pool):
    await pool.register("generalist")
    await pool.register("german", languages=["de"])

    assigned = await engine.assign(await new_ticket(tickets, "sess-1", language="de"))

    assert assigned.assigned_agent_id == "german"


async def test_tie_goes_to_longest_idle(engine, tickets, pool, clock):
    await pool.register("agent-a")
    clock.advance(seconds=1)
    await pool.register("agent-b")
    clock.advance(seconds=1)

    first = await engine.assign(await new_ticket(tickets, "sess-1"))
    clock.advance(seconds=1)
    second = await engine.assign(await new_ticket(tickets, "sess-2"))

    assert first.assigned_agent_id == "agent-a"
    # agent-b now carries less load and has been idle longer
    assert second.assigned_agent_id == "agent-b"


def test_score_prefers_spare_capacity(engine):
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    ticket = Ticket(
        owner_id="user-1",
        conversation_ref="sess-1",
        priority_level=PriorityLevel.MEDIUM,
        sla=SLAData(response_deadline=now, resolution_deadline=now)
    )
    idle = Agent(agent_id="idle", max_concurrent_chats=4, active_chats=0)
    loaded = Agent(agent_id="loaded", max_concurrent_chats=4, active_chats=3)

    assert engine.score(idle, ticket) > engine.score(loaded, ticket)
    assert [a.agent_id for a in engine.rank([loaded, idle], ticket)] == ["idle", "loaded"]


async def test_no_candidate_leaves_ticket_waiting(engine, tickets, pool):
    await pool.register("english", languages=["en"])

    ticket = await new_ticket(tickets, "sess-1", language="fr")

    assert await engine.assign(ticket) is None
    assert (await tickets.get_ticket(ticket.id)).status == TicketStatus.WAITING


async def test_parallel_assignment_respects_capacity(engine, tickets, pool):
    await pool.register("solo", max_concurrent_chats=1)
    waiting = [await new_ticket(tickets, f"sess-{i}") for i in range(3)]

    results = await asyncio.gather(*(engine.assign(t) for t in waiting))

    assert len([r for r in results if r is not None]) == 1
    assert (await pool.get_agent("solo")).active_chats == 1
    assert len(await tickets.list_waiting()) == 2


# ===========================
# Dispatch Tests
# ===========================

async def test_dispatch_skips_unservable_ticket(engine, tickets, pool):
    french = await new_ticket(tickets, "sess-fr", language="fr")
    english = await new_ticket(tickets, "sess-en", language="en")
    await pool.register("english", languages=["en"])

    assigned = await engine.dispatch_waiting()

    assert [t.id for t in assigned] == [english.id]
    assert (await tickets.get_ticket(french.id)).status == TicketStatus.WAITING


@pytest.mark.parametrize("emergency_first", [True, False])
async def test_emergency_is_dispatched_before_low(engine, tickets, pool, clock, emergency_first):
    async def create(conversation, reason, **kwargs):
        ticket, _ = await tickets.create_ticket("user-1", conversation, reason=reason, **kwargs)
        clock.advance(seconds=1)
        return ticket

    if emergency_first:
        emergency = await create("sess-emergency", "fraud alert")
        low = await create("sess-low", "question", severity=1)
    else:
        low = await create("sess-low", "question", severity=1)
        emergency = await create("sess-emergency", "fraud alert")
    assert emergency.priority_level == PriorityLevel.EMERGENCY
    assert low.priority_level == PriorityLevel.LOW

    await pool.register("agent-1", max_concurrent_chats=1)
    assigned = await engine.dispatch_waiting()

    assert [t.id for t in assigned] == [emergency.id]
    assert (await tickets.get_ticket(low.id)).status == TicketStatus.WAITING


async def test_dispatch_disabled_without_auto_assign(tickets, pool, notifier):
    engine = AssignmentEngine(tickets, pool, notifier, auto_assign=False)
    await pool.register("agent-1")
    ticket = await new_ticket(tickets, "sess-1")

    assert await engine.dispatch_waiting() == []
    assert await engine.on_ticket_created(ticket) is None


async def test_resolve_frees_slot_for_next_ticket(engine, tickets, pool):
    await pool.register("solo", max_concurrent_chats=1)
    first = await engine.assign(await new_ticket(tickets, "sess-1"))
    second = await new_ticket(tickets, "sess-2")
    assert await engine.assign(second) is None

    await engine.resolve(first.id, "solo")

    assert (await tickets.get_ticket(second.id)).assigned_agent_id == "solo"
    assert (await pool.get_agent("solo")).active_chats == 1


async def test_cancel_releases_agent(engine, tickets, pool):
    await pool.register("agent-1")
    ticket = await engine.assign(await new_ticket(tickets, "sess-1"))

    cancelled = await engine.cancel(ticket.id, "customer disconnected")

    assert cancelled.status == TicketStatus.CANCELLED
    assert (await pool.get_agent("agent-1")).active_chats == 0


# ===========================
# Manual Accept Tests
# ===========================

async def test_accept_conflict_is_rejected(tickets, pool, notifier, router, make_connection):
    engine = AssignmentEngine(tickets, pool, notifier, auto_assign=False)
    await pool.register("agent-1")
    await pool.register("agent-2")
    loser = make_connection("conn-agent-2")
    router.register(loser)
    router.join(agent_group("agent-2"), loser.connection_id)
    ticket = await new_ticket(tickets, "sess-1")

    accepted = await engine.accept(ticket.id, "agent-1")
    with pytest.raises(AssignmentConflictError):
        await engine.accept(ticket.id, "agent-2")

    assert accepted.assignment_history[0].method == AssignmentMethod.MANUAL
    assert (await pool.get_agent("agent-2")).active_chats == 0
    rejected = loser.events("ticketAcceptRejected")
    assert len(rejected) == 1
    assert rejected[0]["payload"]["ticket_id"] == ticket.id


async def test_accept_without_capacity(tickets, pool, notifier):
    engine = AssignmentEngine(tickets, pool, notifier, auto_assign=False)
    await pool.register("agent-1", max_concurrent_chats=1)
    await pool.reserve_capacity("agent-1")
    ticket = await new_ticket(tickets, "sess-1")

    with pytest.raises(AgentUnavailableError):
        await engine.accept(ticket.id, "agent-1")
    assert (await tickets.get_ticket(ticket.id)).status == TicketStatus.WAITING


async def test_transfer_moves_capacity(engine, tickets, pool):
    await pool.register("agent-1")
    ticket = await engine.assign(await new_ticket(tickets, "sess-1"))
    await pool.register("agent-2")

    moved = await engine.transfer(ticket.id, "agent-1", "agent-2", "needs billing")

    assert moved.assigned_agent_id == "agent-2"
    assert (await pool.get_agent("agent-1")).active_chats == 0
    assert (await pool.get_agent("agent-2")).active_chats == 1


# ===========================
# Supervisor Reassignment Tests
# ===========================

async def test_reassign_waiting_ticket_ignores_busy_status(engine, tickets, pool):
    await pool.register("agent-1")
    await pool.update_status("agent-1", AgentStatus.BUSY)
    ticket = await new_ticket(tickets, "sess-1")

    reassigned = await engine.reassign(ticket.id, "agent-1")

    assert reassigned.status == TicketStatus.ASSIGNED
    assert reassigned.assigned_agent_id == "agent-1"
    assert reassigned.assignment_history[-1].method == AssignmentMethod.MANUAL
    assert (await pool.get_agent("agent-1")).active_chats == 1


async def test_reassign_assigned_ticket_transfers_it(engine, tickets, pool, router, make_connection):
    await pool.register("agent-1")
    ticket = await engine.assign(await new_ticket(tickets, "sess-1"))
    await pool.register("agent-2")
    target = make_connection("conn-agent-2")
    router.register(target)
    router.join(agent_group("agent-2"), target.connection_id)

    reassigned = await engine.reassign(ticket.id, "agent-2", "balancing load")

    assert reassigned.assigned_agent_id == "agent-2"
    last = reassigned.assignment_history[-1]
    assert (last.method, last.reason) == (AssignmentMethod.TRANSFER, "balancing load")
    assert (await pool.get_agent("agent-1")).active_chats == 0
    assert (await pool.get_agent("agent-2")).active_chats == 1
    assert target.events("ticketTransferred")[0]["payload"]["ticket_id"] == ticket.id


async def test_reassign_rejections(engine, tickets, pool):
    await pool.register("full", max_concurrent_chats=1)
    await pool.reserve_capacity("full")
    ticket = await new_ticket(tickets, "sess-1")

    with pytest.raises(AgentNotFoundError):
        await engine.reassign(ticket.id, "ghost")
    with pytest.raises(AgentUnavailableError):
        await engine.reassign(ticket.id, "full")
    assert (await tickets.get_ticket(ticket.id)).status == TicketStatus.WAITING

    await pool.register("agent-1")
    await engine.cancel(ticket.id)
    with pytest.raises(InvalidTransitionError):
        await engine.reassign(ticket.id, "agent-1")
    assert (await pool.get_agent("agent-1")).active_chats == 0


# ===========================
# Agent Departure Tests
# ===========================

async def test_missed_heartbeats_requeue_tickets(engine, tickets, pool, clock, router, make_connection):
    supervisor = make_connection("conn-supervisor")
    router.register(supervisor)
    router.join(SUPERVISORS, supervisor.connection_id)
    await pool.register("agent-1")
    ticket = await engine.assign(await new_ticket(tickets, "sess-1"))

    clock.advance(seconds=91)
    results = await engine.sweep_heartbeats()

    assert [(agent_id, [t.id for t in returned]) for agent_id, returned in results] == [
        ("agent-1", [ticket.id])
    ]
    requeued = await tickets.get_ticket(ticket.id)
    assert requeued.status == TicketStatus.WAITING
    assert await tickets.get_queue_position(ticket.id) == 1
    agent = await pool.get_agent("agent-1")
    assert agent.status == AgentStatus.OFFLINE
    assert agent.active_chats == 0
    assert supervisor.events("agentStatus")[-1]["payload"]["status"] == "offline"

    assert await engine.sweep_heartbeats() == []


async def test_agent_left_hands_tickets_to_others(engine, tickets, pool):
    await pool.register("agent-1", max_concurrent_chats=1)
    ticket = await engine.assign(await new_ticket(tickets, "sess-1"))
    await pool.register("agent-2")

    returned = await engine.agent_left("agent-1")

    assert [t.id for t in returned] == [ticket.id]
    assert (await tickets.get_ticket(ticket.id)).assigned_agent_id == "agent-2"
