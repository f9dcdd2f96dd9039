"""
Component wiring.
Builds every service of one instance from settings and owns the
background loops that keep them moving.

Version: 1.0.0
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .config.settings import Settings
from .realtime.bridge import RedisEventBridge
from .realtime.gateway import ChatGateway
from .realtime.notifications import TicketNotifier
from .realtime.router import EventRouter
from .realtime.worker import MessageWorker
from .services.agent_pool import AgentPool
from .services.ai_collaborator import AICollaborator, HTTPAICollaborator, MockAICollaborator
from .services.assignment import AssignmentEngine
from .services.intent import IntentClassifier, KeywordIntentClassifier
from .services.message_queue import MessageQueue
from .services.priority import PriorityEngine
from .services.rate_limiter import RateLimiter
from .services.session_manager import SessionManager
from .services.sla_monitor import SLAMonitor
from .services.supervisor import SupervisorService
from .services.ticket_service import TicketService
from .store import CoordinationStore, create_coordination_store
from .utils.clock import Clock, utcnow
from .utils.encryption import create_cipher

logger = logging.getLogger(__name__)


@dataclass
class HandoffCore:
    """All components of one instance."""
    settings: Settings
    store: CoordinationStore
    classifier: IntentClassifier
    rate_limiter: RateLimiter
    queue: MessageQueue
    sessions: SessionManager
    priority: PriorityEngine
    router: EventRouter
    notifier: TicketNotifier
    tickets: TicketService
    pool: AgentPool
    engine: AssignmentEngine
    sla_monitor: SLAMonitor
    ai: AICollaborator
    worker: MessageWorker
    gateway: ChatGateway
    supervisor: SupervisorService
    bridge: Optional[RedisEventBridge] = None
    shutdown_event: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: List[asyncio.Task] = field(default_factory=list)

    # ===========================
    # Background loops
    # ===========================

    async def run_store_cleanup(self) -> None:
        """Purge expired keys of the in-memory store; Redis expires on its own."""
        interval = self.settings.store_cleanup_interval_seconds
        logger.info(f"✓ Store cleanup started (interval={interval}s)")

        while not self.shutdown_event.is_set():
            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                removed = await self.store.cleanup_expired()
                if removed:
                    logger.info(f"Store cleanup: removed {removed} expired keys")
            except Exception as e:
                logger.error(f"Error in store cleanup: {e}", exc_info=True)

        logger.info("Store cleanup stopped")

    def start(self) -> List[asyncio.Task]:
        """Start the queue worker, SLA sweep, heartbeat sweep and store cleanup."""
        settings = self.settings
        self.tasks = [
            asyncio.create_task(self.worker.run(
                self.shutdown_event,
                poll_interval=settings.message_queue_poll_interval
            )),
            asyncio.create_task(self.sla_monitor.run(
                self.shutdown_event,
                interval=settings.sla_sweep_interval_seconds
            )),
            asyncio.create_task(self.engine.run_heartbeat_monitor(
                self.shutdown_event,
                interval=settings.heartbeat_interval_seconds
            )),
        ]
        if settings.store_backend == "in_memory":
            self.tasks.append(asyncio.create_task(self.run_store_cleanup()))
        if self.bridge is not None:
            self.tasks.append(self.bridge.start(self.shutdown_event))

        logger.info(f"✓ Started {len(self.tasks)} background tasks")
        return self.tasks

    async def stop(self, timeout: float = 5.0) -> None:
        """Signal shutdown, wait for the loops, then close external resources."""
        self.shutdown_event.set()

        if self.tasks:
            done, pending = await asyncio.wait(self.tasks, timeout=timeout)
            for task in pending:
                logger.warning(f"Background task {task.get_name()} did not stop in time, cancelling")
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            self.tasks = []

        if self.bridge is not None:
            await self.bridge.close()
        await self.ai.close()
        await self.store.close()
        logger.info("✓ Handoff core stopped")


def create_ai_collaborator(settings: Settings) -> AICollaborator:
    if settings.ai_endpoint_url:
        return HTTPAICollaborator(
            endpoint_url=settings.ai_endpoint_url,
            api_key=settings.get_ai_api_key(),
            timeout=settings.ai_timeout_seconds
        )
    logger.warning("No AI endpoint configured, using the mock collaborator")
    return MockAICollaborator()


def create_core(
    settings: Settings,
    store: Optional[CoordinationStore] = None,
    ai: Optional[AICollaborator] = None,
    clock: Clock = utcnow
) -> HandoffCore:
    """
    Build one instance from settings.

    Args:
        settings: Application settings
        store: Coordination store to use instead of the configured one
        ai: AI collaborator to use instead of the configured one
        clock: Source of the current time for every time-dependent service
    """
    if store is None:
        if settings.store_backend == "redis":
            store = create_coordination_store(
                "redis",
                redis_url=settings.redis_url,
                key_prefix=settings.redis_key_prefix,
                max_connections=settings.redis_max_connections,
                socket_timeout=settings.redis_socket_timeout
            )
        else:
            store = create_coordination_store("in_memory")

    classifier = KeywordIntentClassifier()

    rate_limiter = RateLimiter(
        store,
        per_minute=settings.rate_limit_per_minute,
        per_hour=settings.rate_limit_per_hour,
        bypass=settings.rate_limit_bypass,
        violation_log_size=settings.rate_limit_violation_log_size,
        violation_ttl=settings.rate_limit_violation_ttl_seconds
    )
    queue = MessageQueue(
        store,
        name=f"chat:{settings.instance_id}",
        max_size=settings.message_queue_max_size
    )
    sessions = SessionManager(
        store,
        classifier=classifier,
        ttl=settings.session_ttl_seconds,
        max_messages=settings.context_max_messages,
        max_tokens=settings.context_max_tokens,
        tokens_per_char=settings.tokens_per_char,
        summary_messages=settings.context_summary_messages,
        cipher=create_cipher(settings.get_session_encryption_key()),
        clock=clock
    )
    priority = PriorityEngine.from_settings(settings, classifier=classifier)

    router = EventRouter(instance_id=settings.instance_id)
    notifier = TicketNotifier(router, feedback_base_url=settings.feedback_base_url)

    tickets = TicketService(store, priority=priority, notifier=notifier, clock=clock)
    pool = AgentPool(
        store,
        default_max_concurrent_chats=settings.default_max_concurrent_chats,
        heartbeat_interval_seconds=settings.heartbeat_interval_seconds,
        heartbeat_missed_limit=settings.heartbeat_missed_limit,
        clock=clock
    )
    engine = AssignmentEngine(
        tickets,
        pool,
        notifier=notifier,
        weight_department=settings.assignment_weight_department,
        weight_language=settings.assignment_weight_language,
        weight_load=settings.assignment_weight_workload,
        auto_assign=settings.auto_assign
    )
    sla_monitor = SLAMonitor(
        tickets,
        notifier=notifier,
        thresholds=settings.sla_thresholds,
        store=store if settings.store_backend == "redis" else None,
        lock_timeout=max(settings.sla_sweep_interval_seconds * 2, 30),
        clock=clock
    )

    ai = ai or create_ai_collaborator(settings)
    worker = MessageWorker(
        router,
        sessions,
        tickets,
        engine,
        ai,
        queue,
        classifier=classifier,
        confidence_threshold=settings.ai_confidence_threshold,
        clock=clock
    )
    gateway = ChatGateway(
        router,
        sessions,
        rate_limiter,
        queue,
        worker,
        tickets,
        engine,
        pool,
        notifier,
        max_message_length=settings.max_message_length,
        rate_limit_enabled=settings.rate_limit_enabled
    )

    bridge = None
    if settings.store_backend == "redis":
        bridge = RedisEventBridge(router, settings.redis_url)

    logger.info(
        f"✓ Handoff core assembled (instance={settings.instance_id}, "
        f"store={settings.store_backend}, ai={type(ai).__name__})"
    )

    return HandoffCore(
        settings=settings,
        store=store,
        classifier=classifier,
        rate_limiter=rate_limiter,
        queue=queue,
        sessions=sessions,
        priority=priority,
        router=router,
        notifier=notifier,
        tickets=tickets,
        pool=pool,
        engine=engine,
        sla_monitor=sla_monitor,
        ai=ai,
        worker=worker,
        gateway=gateway,
        supervisor=SupervisorService(tickets, pool, clock=clock),
        bridge=bridge
    )


__all__ = ['HandoffCore', 'create_core', 'create_ai_collaborator']
