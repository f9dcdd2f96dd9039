"""
Emergency API routes.
Urgent tickets with their deadline standing, and first-response tracking.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from ...exceptions import InvalidTransitionError, NotAssignedAgentError, TicketNotFoundError
from ...models.ticket import SLAStatus
from ...realtime.notifications import ticket_details
from ...schemas.inbound import EmergencyResponseRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/tickets")
async def emergency_tickets(request: Request) -> Dict[str, Any]:
    """Open high and emergency tickets, most urgent first."""
    entries = []
    for ticket, sla_status in await request.app.state.core.tickets.get_emergency_tickets():
        details = ticket_details(ticket)
        details["assigned_agent_id"] = ticket.assigned_agent_id
        details["sla_status"] = sla_status.model_dump(mode="json")
        entries.append(details)
    return {"count": len(entries), "tickets": entries}


@router.get("/tickets/{ticket_id}/sla", response_model=SLAStatus)
async def ticket_sla_status(ticket_id: str, request: Request) -> SLAStatus:
    """
    Deadline standing of an open ticket.

    Raises:
        HTTPException: 404 unknown ticket, 409 closed ticket
    """
    tickets = request.app.state.core.tickets
    ticket = await tickets.get_ticket(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket {ticket_id} not found")
    if not ticket.is_open:
        raise HTTPException(status_code=409, detail=f"Ticket {ticket_id} is {ticket.status.value}")
    return tickets.sla_status(ticket)


@router.post("/tickets/{ticket_id}/response")
async def track_response(ticket_id: str, body: EmergencyResponseRequest, request: Request) -> Dict[str, Any]:
    """
    Record the assigned agent's first response on an urgent ticket.

    Raises:
        HTTPException: 404 unknown ticket, 409 not assigned, 403 another
            agent's ticket
    """
    tickets = request.app.state.core.tickets
    try:
        ticket = await tickets.track_emergency_response(ticket_id, body.agent_id)
    except TicketNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except NotAssignedAgentError as e:
        raise HTTPException(status_code=403, detail=e.message)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=e.message)

    response = ticket.emergency_response
    return {
        "ticket_id": ticket.id,
        "priority": ticket.priority_level.value,
        "tracked": response is not None,
        "emergency_response": response.model_dump(mode="json") if response else None,
    }
