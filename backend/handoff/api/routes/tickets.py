"""
Ticket and queue API routes.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request

from ...exceptions import FeedbackError, InvalidTransitionError, TicketNotFoundError
from ...models.ticket import QueueStatistics
from ...realtime.notifications import ticket_details
from ...schemas.inbound import FeedbackRequest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/queue/stats", response_model=QueueStatistics)
async def queue_stats(request: Request) -> QueueStatistics:
    """Aggregate counts of the ticket queue."""
    return await request.app.state.core.tickets.get_queue_statistics()


@router.get("/tickets/{ticket_id}")
async def get_ticket(ticket_id: str, request: Request) -> Dict[str, Any]:
    """
    Ticket details including its queue position while waiting.

    Raises:
        HTTPException: 404 if the ticket does not exist
    """
    tickets = request.app.state.core.tickets
    ticket = await tickets.get_ticket(ticket_id)
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Ticket {ticket_id} not found")

    details = ticket_details(ticket)
    details["assigned_agent_id"] = ticket.assigned_agent_id
    details["queue_position"] = await tickets.get_queue_position(ticket_id)
    details["feedback"] = ticket.feedback.model_dump(mode="json") if ticket.feedback else None
    return details


@router.post("/tickets/{ticket_id}/feedback")
async def submit_feedback(ticket_id: str, body: FeedbackRequest, request: Request) -> Dict[str, Any]:
    """
    Rate a resolved ticket.

    Raises:
        HTTPException: 404 unknown ticket, 409 not resolved or already rated,
            403 owner mismatch
    """
    tickets = request.app.state.core.tickets
    try:
        ticket = await tickets.submit_feedback(ticket_id, body.owner_id, body.rating, body.comment)
    except TicketNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except FeedbackError as e:
        status_code = 403 if e.code == "OWNER_MISMATCH" else 409
        raise HTTPException(status_code=status_code, detail=e.message)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return {
        "ticket_id": ticket.id,
        "rating": ticket.feedback.rating,
        "submitted_at": ticket.feedback.submitted_at.isoformat(),
    }
