"""
Chat gateway.
Entry point for every inbound client and agent frame. Validates payloads,
applies the rate limit, and turns domain errors into chatError and
rejection events at the boundary.

Version: 1.0.0
"""
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ValidationError

from ..exceptions import (
    AgentUnavailableError,
    AssignmentConflictError,
    HandoffError,
    InvalidTransitionError,
    QueueFullError,
    StoreUnavailableError,
    TicketNotFoundError,
)
from ..models.agent import AgentStatus
from ..models.events import ErrorCode, EventType
from ..models.queue import QueuedMessage
from ..models.session import MessageRole
from ..models.ticket import HandoffTrigger, Ticket, TicketStatus
from ..schemas.inbound import (
    AcceptTicketPayload,
    AgentMessagePayload,
    AgentTypingPayload,
    ChatMessagePayload,
    ConnectPayload,
    DashboardConnectPayload,
    FeedbackPayload,
    RequestAgentPayload,
    ResolveTicketPayload,
    StatusUpdatePayload,
    TransferTicketPayload,
    TypingPayload,
)
from ..services.agent_pool import AgentPool
from ..services.assignment import AssignmentEngine
from ..services.message_queue import MessageQueue
from ..services.rate_limiter import RateLimiter
from ..services.session_manager import SessionManager
from ..services.ticket_service import TicketService
from ..utils.telemetry import metrics_collector
from .notifications import TicketNotifier, ticket_details, ticket_summary
from .router import (
    AGENTS_ALL,
    SUPERVISORS,
    Connection,
    EventRouter,
    agent_group,
    department_group,
    owner_group,
    session_group,
)
from .worker import MessageWorker

logger = logging.getLogger(__name__)

CUSTOMER_DISCONNECTED = "customer disconnected"

Handler = Callable[[Connection, Dict[str, Any]], Awaitable[None]]


class ChatGateway:
    """
    Handles client and agent frames for one instance.

    Frames are ``{"type": ..., <payload fields>}`` dictionaries. A frame
    handler never raises: failures are reported to the sending connection.
    """

    def __init__(
        self,
        router: EventRouter,
        sessions: SessionManager,
        rate_limiter: RateLimiter,
        queue: MessageQueue,
        worker: MessageWorker,
        tickets: TicketService,
        engine: AssignmentEngine,
        pool: AgentPool,
        notifier: TicketNotifier,
        max_message_length: int = 5000,
        rate_limit_enabled: bool = True
    ):
        self.router = router
        self.sessions = sessions
        self.rate_limiter = rate_limiter
        self.queue = queue
        self.worker = worker
        self.tickets = tickets
        self.engine = engine
        self.pool = pool
        self.notifier = notifier
        self.max_message_length = max_message_length
        self.rate_limit_enabled = rate_limit_enabled

        self.client_handlers: Dict[str, Handler] = {
            "connect": self.connect,
            "message": self.message,
            "typing": self.typing,
            "requestAgent": self.request_agent,
            "disconnect": self.disconnect,
            "submitFeedback": self.submit_feedback,
        }
        self.agent_handlers: Dict[str, Handler] = {
            "dashboardConnect": self.dashboard_connect,
            "statusUpdate": self.status_update,
            "acceptTicket": self.accept_ticket,
            "resolveTicket": self.resolve_ticket,
            "transferTicket": self.transfer_ticket,
            "heartbeat": self.heartbeat,
            "agentMessage": self.agent_message,
            "agentTyping": self.agent_typing,
        }

        logger.info(f"ChatGateway initialized (max_message_length={max_message_length})")

    # ===========================
    # Helpers
    # ===========================

    async def _error(self, connection: Connection, code: ErrorCode, message: str, **extra: Any) -> None:
        await self.router.send(connection.connection_id, EventType.CHAT_ERROR, {
            "code": code.value,
            "message": message,
            **extra,
        })

    @staticmethod
    def _parse(schema, data: Dict[str, Any]) -> BaseModel:
        return schema.model_validate({k: v for k, v in data.items() if k != "type"})

    def _attach(self, connection: Connection, owner_id: str, session_id: str, language: str) -> None:
        """Point the connection at a conversation, leaving any previous one."""
        if connection.session_id and connection.session_id != session_id:
            self.router.leave(session_group(connection.session_id), connection.connection_id)
        if connection.owner_id and connection.owner_id != owner_id:
            self.router.leave(owner_group(connection.owner_id), connection.connection_id)

        connection.owner_id = owner_id
        connection.session_id = session_id
        connection.language = language
        self.router.join(session_group(session_id), connection.connection_id)
        self.router.join(owner_group(owner_id), connection.connection_id)

    async def _open_ticket(self, session_id: str) -> Optional[Ticket]:
        try:
            return await self.tickets.open_ticket_for_conversation(session_id)
        except StoreUnavailableError as e:
            logger.warning(f"Could not look up the ticket of session {session_id}: {e}")
            return None

    # ===========================
    # Dispatch
    # ===========================

    async def _dispatch(self, handlers: Dict[str, Handler], connection: Connection, frame: Dict[str, Any]) -> None:
        frame_type = frame.get("type") if isinstance(frame, dict) else None
        handler = handlers.get(frame_type)
        if handler is None:
            await self._error(connection, ErrorCode.INVALID_PAYLOAD, f"Unknown frame type: {frame_type}")
            return

        try:
            await handler(connection, frame)
        except ValidationError as e:
            await self._error(
                connection,
                ErrorCode.INVALID_PAYLOAD,
                "Invalid payload",
                details=e.errors(include_url=False, include_context=False)
            )
        except HandoffError as e:
            logger.warning(f"{frame_type} from {connection.connection_id} failed: {e.message}")
            await self._error(connection, ErrorCode.TICKET_ERROR, e.message)
        except Exception as e:
            logger.error(f"Error handling {frame_type} from {connection.connection_id}: {e}", exc_info=True)
            metrics_collector.record_error()
            await self._error(connection, ErrorCode.INTERNAL_ERROR, "Internal error")

    async def handle_client_frame(self, connection: Connection, frame: Dict[str, Any]) -> None:
        await self._dispatch(self.client_handlers, connection, frame)

    async def handle_agent_frame(self, connection: Connection, frame: Dict[str, Any]) -> None:
        await self._dispatch(self.agent_handlers, connection, frame)

    # ===========================
    # Client frames
    # ===========================

    async def connect(self, connection: Connection, data: Dict[str, Any]) -> None:
        payload = self._parse(ConnectPayload, data)
        self._attach(connection, payload.owner_id, payload.session_id, payload.language)

        message_count = 0
        try:
            session = await self.sessions.get_or_create_session(
                payload.owner_id, payload.session_id, payload.language
            )
            message_count = session.message_count
        except StoreUnavailableError as e:
            logger.warning(f"Session {payload.session_id} not loaded: {e}")

        ticket = await self._open_ticket(payload.session_id)
        await self.router.send(connection.connection_id, EventType.CONNECTED, {
            "connection_id": connection.connection_id,
            "owner_id": payload.owner_id,
            "session_id": payload.session_id,
            "language": payload.language,
            "message_count": message_count,
            "ticket": ticket_summary(ticket) if ticket else None,
        })
        logger.info(f"Client {payload.owner_id} connected to session {payload.session_id}")

    async def message(self, connection: Connection, data: Dict[str, Any]) -> None:
        payload = self._parse(ChatMessagePayload, data)

        owner_id = payload.owner_id or connection.owner_id
        session_id = payload.session_id or connection.session_id
        language = payload.language or connection.language
        if not owner_id or not session_id:
            await self._error(connection, ErrorCode.NOT_CONNECTED, "Connect to a session before sending messages")
            return
        if owner_id != connection.owner_id or session_id != connection.session_id:
            self._attach(connection, owner_id, session_id, language)

        text = payload.text.strip()
        if not text:
            await self._error(connection, ErrorCode.EMPTY_MESSAGE, "Message is empty")
            return
        if len(text) > self.max_message_length:
            await self._error(
                connection,
                ErrorCode.MESSAGE_TOO_LONG,
                f"Message exceeds {self.max_message_length} characters"
            )
            return

        if self.rate_limit_enabled:
            result = await self.rate_limiter.check_rate_limit(owner_id)
            if not result.allowed:
                await self.router.send(connection.connection_id, EventType.RATE_LIMIT_EXCEEDED, {
                    "message": f"Too many messages. Please wait {result.retry_after} seconds.",
                    "retry_after": result.retry_after,
                    "limit": result.limit,
                    "window": result.window.value if result.window else None,
                })
                return

        metrics_collector.record_message("user")

        # A human owns the conversation once a ticket is open
        ticket = await self._open_ticket(session_id)
        if ticket is not None:
            await self._store_message(owner_id, session_id, MessageRole.USER, text, language)
            if ticket.assigned_agent_id:
                await self.router.broadcast(agent_group(ticket.assigned_agent_id), EventType.CUSTOMER_MESSAGE, {
                    "ticket_id": ticket.id,
                    "session_id": session_id,
                    "text": text,
                })
            return

        if self.sessions.should_clear_context(text):
            try:
                await self.sessions.clear_context(owner_id, session_id)
            except StoreUnavailableError as e:
                logger.warning(f"Context of {session_id} not cleared: {e}")

        await self._store_message(owner_id, session_id, MessageRole.USER, text, language)

        queued = QueuedMessage(
            owner_id=owner_id,
            session_id=session_id,
            text=text,
            language=language,
            connection_id=connection.connection_id
        )
        try:
            await self.queue.enqueue(queued)
        except QueueFullError:
            await self._error(connection, ErrorCode.QUEUE_FULL, "We're busy right now, please try again shortly")
        except StoreUnavailableError as e:
            logger.warning(f"Queue unavailable, processing {queued.id} directly: {e}")
            await self.worker.process(queued)

    async def _store_message(
        self,
        owner_id: str,
        session_id: str,
        role: MessageRole,
        text: str,
        language: str
    ) -> None:
        try:
            await self.sessions.add_message(owner_id, session_id, role, text, language)
        except StoreUnavailableError as e:
            logger.warning(f"Message for {session_id} not saved to history: {e}")

    async def typing(self, connection: Connection, data: Dict[str, Any]) -> None:
        payload = self._parse(TypingPayload, data)
        if not connection.session_id:
            return

        ticket = await self._open_ticket(connection.session_id)
        if ticket is not None and ticket.assigned_agent_id:
            await self.router.broadcast(agent_group(ticket.assigned_agent_id), EventType.TYPING, {
                "ticket_id": ticket.id,
                "is_typing": payload.is_typing,
                "sender": "customer",
            })

    async def request_agent(self, connection: Connection, data: Dict[str, Any]) -> None:
        payload = self._parse(RequestAgentPayload, data)
        if not connection.owner_id or not connection.session_id:
            await self._error(connection, ErrorCode.NOT_CONNECTED, "Connect to a session before requesting an agent")
            return

        await self.worker.request_handoff(
            connection.owner_id,
            connection.session_id,
            connection.language,
            reason=payload.reason,
            trigger=HandoffTrigger.EXPLICIT,
            department=payload.department,
            severity=payload.severity
        )

    async def disconnect(self, connection: Connection, data: Dict[str, Any]) -> None:
        """Explicit end of conversation: a waiting ticket is cancelled and the session destroyed."""
        owner_id, session_id = connection.owner_id, connection.session_id
        if owner_id and session_id:
            ticket = await self._open_ticket(session_id)
            if ticket is not None and ticket.status == TicketStatus.WAITING:
                await self.engine.cancel(ticket.id, CUSTOMER_DISCONNECTED)
            try:
                await self.sessions.delete_session(owner_id, session_id)
            except StoreUnavailableError as e:
                logger.warning(f"Session {session_id} not deleted: {e}")

        self.connection_closed(connection)

    def connection_closed(self, connection: Connection) -> None:
        """Transport went away. The session lives on until its TTL."""
        self.router.unregister(connection.connection_id)

    async def submit_feedback(self, connection: Connection, data: Dict[str, Any]) -> None:
        payload = self._parse(FeedbackPayload, data)
        if not connection.owner_id:
            await self._error(connection, ErrorCode.NOT_CONNECTED, "Connect before submitting feedback")
            return

        ticket = await self.tickets.submit_feedback(
            payload.ticket_id, connection.owner_id, payload.rating, payload.comment
        )
        await self.router.send(connection.connection_id, EventType.FEEDBACK_RECEIVED, {
            "ticket_id": ticket.id,
            "rating": payload.rating,
        })

    # ===========================
    # Agent frames
    # ===========================

    def _require_agent(self, connection: Connection) -> str:
        if not connection.agent_id:
            raise HandoffError("Connect the dashboard first", code="not_connected")
        return connection.agent_id

    async def dashboard_connect(self, connection: Connection, data: Dict[str, Any]) -> None:
        payload = self._parse(DashboardConnectPayload, data)
        agent = await self.pool.register(
            payload.agent_id,
            department=payload.department,
            languages=payload.languages,
            skills=payload.skills,
            max_concurrent_chats=payload.max_concurrent_chats,
            is_supervisor=payload.is_supervisor
        )

        connection.agent_id = agent.agent_id
        self.router.join(agent_group(agent.agent_id), connection.connection_id)
        self.router.join(AGENTS_ALL, connection.connection_id)
        if agent.department:
            self.router.join(department_group(agent.department), connection.connection_id)
        if agent.is_supervisor:
            self.router.join(SUPERVISORS, connection.connection_id)

        assigned = await self.tickets.tickets_for_agent(agent.agent_id)
        await self.router.send(connection.connection_id, EventType.CONNECTED, {
            "connection_id": connection.connection_id,
            "agent": agent.to_dict(),
            "assigned_tickets": [ticket_details(ticket) for ticket in assigned],
        })
        await self.notifier.agent_status(agent)
        await self.engine.dispatch_waiting()

    async def status_update(self, connection: Connection, data: Dict[str, Any]) -> None:
        agent_id = self._require_agent(connection)
        payload = self._parse(StatusUpdatePayload, data)

        agent = await self.pool.update_status(agent_id, payload.status)
        await self.notifier.agent_status(agent)

        if payload.status == AgentStatus.OFFLINE:
            await self.engine.handle_agent_offline(agent_id)
        elif payload.status == AgentStatus.AVAILABLE:
            await self.engine.dispatch_waiting()

    async def accept_ticket(self, connection: Connection, data: Dict[str, Any]) -> None:
        agent_id = self._require_agent(connection)
        payload = self._parse(AcceptTicketPayload, data)

        try:
            await self.engine.accept(payload.ticket_id, agent_id)
        except TicketNotFoundError as e:
            await self.notifier.accept_rejected(agent_id, payload.ticket_id, e.message)
        except (AgentUnavailableError, AssignmentConflictError, InvalidTransitionError):
            # The engine already told the agent
            pass

    async def resolve_ticket(self, connection: Connection, data: Dict[str, Any]) -> None:
        agent_id = self._require_agent(connection)
        payload = self._parse(ResolveTicketPayload, data)
        await self.engine.resolve(payload.ticket_id, agent_id, payload.notes)

    async def transfer_ticket(self, connection: Connection, data: Dict[str, Any]) -> None:
        agent_id = self._require_agent(connection)
        payload = self._parse(TransferTicketPayload, data)
        await self.engine.transfer(payload.ticket_id, agent_id, payload.target_agent_id, payload.reason)

    async def heartbeat(self, connection: Connection, data: Dict[str, Any]) -> None:
        agent_id = self._require_agent(connection)
        agent = await self.pool.heartbeat(agent_id)
        await self.router.send(connection.connection_id, EventType.AGENT_STATUS, {
            "agent_id": agent.agent_id,
            "status": agent.status.value,
            "active_chats": agent.active_chats,
        })

    async def _assigned_ticket(self, agent_id: str, ticket_id: str) -> Ticket:
        ticket = await self.tickets.require_ticket(ticket_id)
        if ticket.assigned_agent_id != agent_id:
            raise HandoffError(f"Ticket {ticket_id} is not assigned to {agent_id}", code="not_assigned")
        return ticket

    async def agent_message(self, connection: Connection, data: Dict[str, Any]) -> None:
        agent_id = self._require_agent(connection)
        payload = self._parse(AgentMessagePayload, data)
        text = payload.text.strip()
        if not text:
            await self._error(connection, ErrorCode.EMPTY_MESSAGE, "Message is empty")
            return

        ticket = await self._assigned_ticket(agent_id, payload.ticket_id)
        await self._store_message(ticket.owner_id, ticket.conversation_ref, MessageRole.ASSISTANT, text, ticket.language)
        metrics_collector.record_message("agent")

        await self.router.broadcast(session_group(ticket.conversation_ref), EventType.CHAT_RESPONSE, {
            "text": text,
            "confidence": 1.0,
            "sender": "agent",
            "agent_id": agent_id,
        })

        if ticket.is_urgent and ticket.emergency_response is None:
            await self.tickets.track_emergency_response(ticket.id, agent_id)

    async def agent_typing(self, connection: Connection, data: Dict[str, Any]) -> None:
        agent_id = self._require_agent(connection)
        payload = self._parse(AgentTypingPayload, data)
        ticket = await self._assigned_ticket(agent_id, payload.ticket_id)
        await self.router.broadcast(session_group(ticket.conversation_ref), EventType.TYPING, {
            "is_typing": payload.is_typing,
            "sender": "agent",
        })

    async def agent_disconnected(self, connection: Connection) -> None:
        """Dashboard socket closed. The heartbeat sweep decides when the agent is gone."""
        self.router.unregister(connection.connection_id)


__all__ = ['ChatGateway', 'CUSTOMER_DISCONNECTED']
