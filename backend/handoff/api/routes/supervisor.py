"""
Supervisor API routes.
Team overview, performance and workload reports, plus the two overrides a
supervisor has: reassigning a ticket and setting an agent's status.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from ...exceptions import (
    AgentNotFoundError,
    AgentUnavailableError,
    AssignmentConflictError,
    InvalidTransitionError,
    NotAssignedAgentError,
    TicketNotFoundError,
)
from ...models.agent import AgentStatus
from ...models.supervisor import TeamOverview, WorkloadDistribution
from ...realtime.notifications import ticket_details
from ...schemas.inbound import AgentStatusRequest, ReassignRequest
from ...services.supervisor import TimeRange

logger = logging.getLogger(__name__)

router = APIRouter()

SUPERVISOR_OFFLINE = "set offline by supervisor"


@router.get("/overview", response_model=TeamOverview)
async def team_overview(request: Request) -> TeamOverview:
    return await request.app.state.core.supervisor.team_overview()


@router.get("/agents/performance")
async def agent_performance(request: Request, time_range: TimeRange = TimeRange.WEEK) -> Dict[str, Any]:
    """Per-agent assigned/resolved counts, handle time and rating over a window."""
    agents = await request.app.state.core.supervisor.agent_performance(time_range)
    return {
        "time_range": time_range.value,
        "agents": [performance.model_dump(mode="json") for performance in agents],
    }


@router.get("/agents/workload", response_model=WorkloadDistribution)
async def workload_distribution(request: Request) -> WorkloadDistribution:
    return await request.app.state.core.supervisor.workload_distribution()


@router.put("/agents/{agent_id}/status")
async def set_agent_status(agent_id: str, body: AgentStatusRequest, request: Request) -> Dict[str, Any]:
    """
    Override an agent's status.

    Setting an agent offline returns its tickets to the queue; setting one
    available lets it pick up waiting tickets.

    Raises:
        HTTPException: 404 if the agent is not registered
    """
    core = request.app.state.core
    try:
        agent = await core.pool.update_status(agent_id, body.status)
    except AgentNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)

    await core.notifier.agent_status(agent)
    returned = []
    if body.status == AgentStatus.OFFLINE:
        returned = await core.engine.handle_agent_offline(agent_id, SUPERVISOR_OFFLINE)
    elif body.status == AgentStatus.AVAILABLE:
        await core.engine.dispatch_waiting()

    logger.info(f"Supervisor set {agent_id} to {body.status.value}")
    return {
        "agent_id": agent.agent_id,
        "status": agent.status.value,
        "returned_tickets": [ticket.id for ticket in returned],
    }


@router.post("/tickets/{ticket_id}/reassign")
async def reassign_ticket(ticket_id: str, body: ReassignRequest, request: Request) -> Dict[str, Any]:
    """
    Put an open ticket on another agent.

    Raises:
        HTTPException: 404 unknown ticket or agent, 409 ticket closed, agent
            full or offline, or the ticket changed hands meanwhile
    """
    engine = request.app.state.core.engine
    try:
        ticket = await engine.reassign(ticket_id, body.agent_id, body.reason)
    except (TicketNotFoundError, AgentNotFoundError) as e:
        raise HTTPException(status_code=404, detail=e.message)
    except (
        AgentUnavailableError,
        AssignmentConflictError,
        InvalidTransitionError,
        NotAssignedAgentError
    ) as e:
        raise HTTPException(status_code=409, detail=e.message)

    details = ticket_details(ticket)
    details["assigned_agent_id"] = ticket.assigned_agent_id
    return details
