"""
Tests for the SLA monitor sweep.
"""
import asyncio
from datetime import timedelta

import pytest

from handoff.models.ticket import DeadlineKind, PriorityLevel
from handoff.realtime.notifications import TicketNotifier
from handoff.realtime.router import SUPERVISORS, agent_group
from handoff.services.sla_monitor import SWEEP_LOCK, SLAMonitor
from handoff.services.ticket_service import TicketService
from handoff.store import DistributedLock


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
def monitor(tickets, notifier, clock) -> SLAMonitor:
    return SLAMonitor(tickets, notifier, thresholds=(0.75, 0.9, 1.0), clock=clock)


@pytest.fixture
def supervisor(router, make_connection):
    connection = make_connection("conn-supervisor")
    router.register(connection)
    router.join(SUPERVISORS, connection.connection_id)
    return connection


async def medium_ticket(tickets, conversation="sess-1"):
    """Medium priority: 15 minute response, 240 minute resolution."""
    ticket, _ = await tickets.create_ticket("user-1", conversation, reason="question")
    assert ticket.priority_level == PriorityLevel.MEDIUM
    return ticket


# ===========================
# Threshold Tests
# ===========================

async def test_nothing_before_first_threshold(monitor, tickets, clock, supervisor):
    await medium_ticket(tickets)
    clock.advance(minutes=10)

    report = await monitor.sweep()

    assert report.evaluated == 1
    assert report.notifications == 0
    assert supervisor.events("slaWarning") == []


async def test_warning_is_announced_once(monitor, tickets, clock, supervisor):
    ticket = await medium_ticket(tickets)
    clock.advance(minutes=12)

    first = await monitor.sweep()
    second = await monitor.sweep()

    assert first.notifications == 1
    assert second.notifications == 0
    warnings = supervisor.events("slaWarning")
    assert len(warnings) == 1
    assert warnings[0]["payload"]["ticket_id"] == ticket.id
    assert warnings[0]["payload"]["deadline"] == "response"
    assert warnings[0]["payload"]["threshold"] == 0.75


async def test_breach_is_announced_exactly_once(monitor, tickets, clock, supervisor):
    ticket = await medium_ticket(tickets)

    for minute in (12, 14, 16, 17, 18):
        clock.now = ticket.created_at + timedelta(minutes=minute)
        await monitor.sweep()

    breaches = supervisor.events("slaBreach")
    assert len(breaches) == 1
    assert breaches[0]["payload"]["deadline"] == "response"
    assert len(supervisor.events("slaWarning")) == 2


async def test_every_crossed_threshold_is_announced_in_order(monitor, tickets, clock, supervisor):
    await medium_ticket(tickets)
    clock.advance(minutes=20)

    report = await monitor.sweep()

    assert report.notifications == 3
    announced = [
        (event["type"], event["payload"]["threshold"])
        for event in supervisor.sent
        if event["type"] in ("slaWarning", "slaBreach")
    ]
    assert announced == [("slaWarning", 0.75), ("slaWarning", 0.9), ("slaBreach", 1.0)]


async def test_short_deadline_announces_each_threshold_once_across_ticks(monitor, tickets, clock, supervisor):
    """A 120 s deadline swept every 15 s jumps from 87.5% straight past 90%."""
    ticket, _ = await tickets.create_ticket("user-1", "sess-1", reason="fraud emergency")
    assert ticket.priority_level == PriorityLevel.EMERGENCY

    for second in range(0, 181, 15):
        clock.now = ticket.created_at + timedelta(seconds=second)
        await monitor.sweep()

    response_thresholds = [
        event["payload"]["threshold"]
        for event in supervisor.sent
        if event["type"] in ("slaWarning", "slaBreach") and event["payload"]["deadline"] == "response"
    ]
    assert response_thresholds == [0.75, 0.9, 1.0]
    assert len(supervisor.events("ticketEscalated")) == 1


async def test_response_breach_escalates_waiting_ticket(monitor, tickets, clock, supervisor):
    ticket = await medium_ticket(tickets)
    clock.advance(minutes=16)

    report = await monitor.sweep()

    assert report.escalations == 1
    escalated = await tickets.get_ticket(ticket.id)
    assert escalated.sla.is_overdue is True
    assert escalated.sla.escalation_level == 1
    assert escalated.priority_level == PriorityLevel.HIGH
    assert len(supervisor.events("ticketEscalated")) == 1


async def test_concurrent_sweeps_announce_once(tickets, notifier, clock, supervisor):
    first = SLAMonitor(tickets, notifier, clock=clock)
    second = SLAMonitor(tickets, notifier, clock=clock)
    await medium_ticket(tickets)
    clock.advance(minutes=16)

    reports = await asyncio.gather(first.sweep(), second.sweep())

    assert sum(report.notifications for report in reports) == 3
    assert len(supervisor.events("slaBreach")) == 1
    assert [e["payload"]["threshold"] for e in supervisor.events("slaWarning")] == [0.75, 0.9]


# ===========================
# Assigned Ticket Tests
# ===========================

async def test_assigned_ticket_tracks_resolution_only(monitor, tickets, clock, router, make_connection):
    agent = make_connection("conn-agent-1")
    router.register(agent)
    router.join(agent_group("agent-1"), agent.connection_id)
    ticket = await medium_ticket(tickets)
    await tickets.assign(ticket.id, "agent-1")

    assert monitor.tracked_deadlines(await tickets.get_ticket(ticket.id)) == [DeadlineKind.RESOLUTION]

    clock.advance(minutes=181)
    report = await monitor.sweep()

    assert report.notifications == 1
    assert report.escalations == 0
    warnings = agent.events("slaWarning")
    assert len(warnings) == 1
    assert warnings[0]["payload"]["deadline"] == "resolution"


async def test_closed_tickets_are_ignored(monitor, tickets, clock):
    ticket = await medium_ticket(tickets)
    await tickets.cancel(ticket.id, "customer left")
    clock.advance(hours=5)

    report = await monitor.sweep()

    assert report.evaluated == 0
    assert report.notifications == 0


# ===========================
# Lease Tests
# ===========================

async def test_sweep_skips_while_another_instance_holds_the_lease(tickets, notifier, store, clock):
    monitor = SLAMonitor(tickets, notifier, store=store, clock=clock)
    holder = DistributedLock(store, SWEEP_LOCK, timeout=60)
    await holder.acquire(blocking=False)

    report = await monitor.sweep()

    assert report.skipped is True
    await holder.release()
    assert (await monitor.sweep()).skipped is False


async def test_run_stops_on_shutdown(monitor):
    shutdown = asyncio.Event()
    task = asyncio.create_task(monitor.run(shutdown, interval=0.01))

    await asyncio.sleep(0.05)
    shutdown.set()

    await asyncio.wait_for(task, timeout=1.0)
    assert task.done()
