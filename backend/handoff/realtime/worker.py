"""
Queue worker.
Takes inbound messages off this instance's queue and either asks the AI
collaborator for a reply or hands the conversation to a human.

Version: 1.0.0
"""
import asyncio
import logging
from typing import List, Optional

from ..exceptions import AIServiceError, StoreUnavailableError
from ..models.events import ErrorCode, EventType
from ..models.queue import QueuedMessage
from ..models.session import Message, MessageRole
from ..models.ticket import HandoffTrigger, Ticket
from ..services.ai_collaborator import AICollaborator
from ..services.assignment import AssignmentEngine
from ..services.intent import IntentClassifier, KeywordIntentClassifier
from ..services.message_queue import MessageQueue
from ..services.session_manager import SessionManager
from ..services.ticket_service import TicketService
from ..utils.clock import Clock, utcnow
from ..utils.telemetry import metrics_collector, track_dropped_result
from .router import EventRouter, session_group

logger = logging.getLogger(__name__)

AI_UNAVAILABLE_MESSAGE = (
    "Sorry, I couldn't process that right now. "
    "Please try again, or ask to speak with a human agent."
)


class MessageWorker:
    """
    Processes queued chat messages.

    The connection that sent a message is checked when the message is
    taken off the queue and again just before the reply is emitted; a reply
    for a connection that went away is discarded, never redelivered.
    """

    def __init__(
        self,
        router: EventRouter,
        sessions: SessionManager,
        tickets: TicketService,
        engine: AssignmentEngine,
        ai: AICollaborator,
        queue: MessageQueue,
        classifier: Optional[IntentClassifier] = None,
        confidence_threshold: float = 0.5,
        clock: Clock = utcnow
    ):
        """
        Initialize message worker.

        Args:
            router: Event router
            sessions: Session manager
            tickets: Ticket state machine
            engine: Assignment engine
            ai: AI collaborator
            queue: This instance's message queue
            classifier: Handoff intent classifier
            confidence_threshold: Replies below this confidence trigger a handoff
            clock: Source of the current time
        """
        self.router = router
        self.sessions = sessions
        self.tickets = tickets
        self.engine = engine
        self.ai = ai
        self.queue = queue
        self.classifier = classifier or KeywordIntentClassifier()
        self.confidence_threshold = confidence_threshold
        self.clock = clock

    # ===========================
    # Handoff
    # ===========================

    async def request_handoff(
        self,
        owner_id: str,
        session_id: str,
        language: str,
        reason: str,
        trigger: HandoffTrigger,
        department: Optional[str] = None,
        severity: Optional[int] = None,
        scan_text: Optional[str] = None
    ) -> Ticket:
        """
        Open (or return the existing) ticket for a conversation and offer it.

        The recent history is frozen into the ticket and scanned, together
        with the reason, for emergency keywords.
        """
        session = await self.sessions.get_session(owner_id, session_id)
        context: List[Message] = list(session.messages) if session else []
        wait_seconds = max((self.clock() - session.created_at).total_seconds(), 0.0) if session else 0.0

        customer_text = " ".join(m.content for m in context if m.role == MessageRole.USER)
        ticket, created = await self.tickets.create_ticket(
            owner_id=owner_id,
            conversation_ref=session_id,
            reason=reason,
            trigger=trigger,
            context=context,
            language=language,
            department=department,
            severity=severity,
            wait_seconds=wait_seconds,
            scan_text=" ".join(filter(None, [reason, scan_text, customer_text]))
        )

        if not created:
            position = await self.tickets.get_queue_position(ticket.id)
            await self.router.broadcast(session_group(session_id), EventType.HANDOFF_QUEUED, {
                "ticket_id": ticket.id,
                "position": position,
                "status": ticket.status.value,
                "estimated_wait_minutes": self.tickets.estimate_wait_minutes(position or 1, ticket.priority_level),
            })
            return ticket

        assigned = await self.engine.on_ticket_created(ticket)
        return assigned or ticket

    # ===========================
    # Processing
    # ===========================

    async def _history(self, message: QueuedMessage) -> List[Message]:
        """Context window for the AI, without the message being answered."""
        try:
            history = await self.sessions.get_context_with_token_limit(message.owner_id, message.session_id)
        except StoreUnavailableError as e:
            logger.warning(f"Answering {message.id} without history: {e}")
            return []

        if history and history[-1].role == MessageRole.USER and history[-1].content == message.text:
            history = history[:-1]
        return history

    async def process(self, message: QueuedMessage) -> None:
        """Handle one inbound message end to end."""
        if not self.router.has_connection(message.connection_id):
            track_dropped_result("dequeue")
            logger.warning(
                f"Dropping message {message.id}: connection {message.connection_id} is gone"
            )
            return

        group = session_group(message.session_id)

        intent = self.classifier.detect_handoff(message.text)
        if intent is not None:
            await self.request_handoff(
                message.owner_id,
                message.session_id,
                message.language,
                reason=intent.reason,
                trigger=HandoffTrigger.KEYWORD,
                scan_text=message.text
            )
            return

        await self.router.broadcast(group, EventType.TYPING, {"is_typing": True, "sender": "assistant"})
        history = await self._history(message)

        try:
            response = await self.ai.generate_response(message.text, history, message.language)
        except AIServiceError as e:
            metrics_collector.record_error()
            logger.error(f"AI collaborator failed for message {message.id}: {e}")
            await self.router.broadcast(group, EventType.TYPING, {"is_typing": False, "sender": "assistant"})
            await self.router.send(message.connection_id, EventType.CHAT_ERROR, {
                "code": ErrorCode.AI_UNAVAILABLE.value,
                "message": AI_UNAVAILABLE_MESSAGE,
            })
            return

        # The call may have outlived the connection
        if not self.router.has_connection(message.connection_id):
            track_dropped_result("emit")
            logger.warning(
                f"Discarding reply to {message.id}: connection {message.connection_id} closed during processing"
            )
            return

        await self.router.broadcast(group, EventType.TYPING, {"is_typing": False, "sender": "assistant"})

        if response.should_handoff or response.confidence < self.confidence_threshold:
            logger.info(
                f"Handing off session {message.session_id} "
                f"(confidence={response.confidence:.2f}, should_handoff={response.should_handoff})"
            )
            await self.request_handoff(
                message.owner_id,
                message.session_id,
                message.language,
                reason="Assistant could not answer confidently",
                trigger=HandoffTrigger.LOW_CONFIDENCE,
                scan_text=message.text
            )
            return

        try:
            await self.sessions.add_message(
                message.owner_id, message.session_id, MessageRole.ASSISTANT, response.content, message.language
            )
        except StoreUnavailableError as e:
            logger.warning(f"Reply to {message.id} not saved to history: {e}")

        metrics_collector.record_message("assistant")
        await self.router.broadcast(group, EventType.CHAT_RESPONSE, {
            "text": response.content,
            "confidence": response.confidence,
            "sender": "assistant",
        })

    async def run(
        self,
        shutdown_event: asyncio.Event,
        poll_interval: float = 0.5,
        batch_size: int = 10
    ) -> None:
        """Drain the queue until shutdown, idling ``poll_interval`` when empty."""
        logger.info(f"✓ Message worker started (queue={self.queue.name})")

        while not shutdown_event.is_set():
            try:
                processed = await self.queue.process_batch(self.process, batch_size)
            except StoreUnavailableError as e:
                logger.error(f"Message queue unavailable: {e}")
                processed = 0

            if processed == 0:
                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=poll_interval)
                except asyncio.TimeoutError:
                    pass

        logger.info("Message worker stopped")


__all__ = ['MessageWorker', 'AI_UNAVAILABLE_MESSAGE']
