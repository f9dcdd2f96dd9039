"""
Telemetry and monitoring utilities.
Prometheus metrics for the queue, tickets, SLA sweep and assignment engine.
"""
import logging
import time

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)

# Metrics definitions
request_count = Counter(
    'handoff_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

request_duration = Histogram(
    'handoff_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

chat_messages = Counter(
    'handoff_chat_messages_total',
    'Chat messages handled',
    ['role']
)

rate_limit_denials = Counter(
    'handoff_rate_limit_denials_total',
    'Messages denied by the rate limiter',
    ['window']
)

dropped_results = Counter(
    'handoff_dropped_results_total',
    'Results dropped because the originating connection was gone',
    ['stage']
)

tickets_created = Counter(
    'handoff_tickets_created_total',
    'Tickets created',
    ['priority', 'trigger']
)

ticket_transitions = Counter(
    'handoff_ticket_transitions_total',
    'Ticket state transitions',
    ['from_status', 'to_status']
)

sla_events = Counter(
    'handoff_sla_events_total',
    'SLA warnings and breaches emitted',
    ['deadline', 'event']
)

assignment_attempts = Counter(
    'handoff_assignment_attempts_total',
    'Assignment attempts by outcome',
    ['outcome']
)

queue_depth = Gauge(
    'handoff_message_queue_depth',
    'Messages waiting in this instance queue'
)

waiting_tickets = Gauge(
    'handoff_waiting_tickets',
    'Tickets waiting for an agent'
)

active_connections = Gauge(
    'handoff_connections_active',
    'Active realtime connections on this instance'
)

ai_response_time = Histogram(
    'handoff_ai_response_time_seconds',
    'Reply generation time',
    ['outcome']
)

emergency_response_time = Histogram(
    'handoff_emergency_response_seconds',
    'Time from creation to first agent response on urgent tickets',
    ['priority'],
    buckets=(15, 30, 60, 120, 300, 600, 1800)
)


def setup_telemetry(app: FastAPI) -> None:
    """
    Mount /metrics and request tracking on the application.

    Args:
        app: FastAPI application instance
    """
    logger.info("Setting up telemetry...")

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.middleware("http")
    async def track_requests(request, call_next):
        """Track HTTP request metrics."""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        request_count.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).inc()

        request_duration.labels(
            method=request.method,
            endpoint=request.url.path
        ).observe(duration)

        return response

    logger.info("Telemetry setup complete")


def track_chat_message(role: str) -> None:
    chat_messages.labels(role=role).inc()


def track_rate_limit_denial(window: str) -> None:
    rate_limit_denials.labels(window=window).inc()


def track_dropped_result(stage: str) -> None:
    """Track a reply discarded because its connection disappeared."""
    dropped_results.labels(stage=stage).inc()


def track_ticket_created(priority: str, trigger: str) -> None:
    tickets_created.labels(priority=priority, trigger=trigger).inc()


def track_ticket_transition(from_status: str, to_status: str) -> None:
    ticket_transitions.labels(from_status=from_status, to_status=to_status).inc()


def track_sla_event(deadline: str, event: str) -> None:
    sla_events.labels(deadline=deadline, event=event).inc()


def track_assignment(outcome: str) -> None:
    """Track an assignment attempt (assigned, no_candidate, conflict)."""
    assignment_attempts.labels(outcome=outcome).inc()


def track_ai_response_time(duration: float, success: bool = True) -> None:
    ai_response_time.labels(outcome="success" if success else "error").observe(duration)


def track_emergency_response(priority: str, seconds: float) -> None:
    emergency_response_time.labels(priority=priority).observe(seconds)


def update_queue_depth(count: int) -> None:
    queue_depth.set(count)


def update_waiting_tickets(count: int) -> None:
    waiting_tickets.set(count)


def update_active_connections(count: int) -> None:
    active_connections.set(count)


class MetricsCollector:
    """In-process counters exposed on the health endpoint."""

    def __init__(self):
        self.start_time = time.time()
        self.message_count = 0
        self.error_count = 0

    def record_message(self, role: str) -> None:
        self.message_count += 1
        track_chat_message(role)

    def record_error(self) -> None:
        self.error_count += 1

    def get_stats(self) -> dict:
        """Get current statistics."""
        uptime = time.time() - self.start_time

        return {
            "uptime_seconds": uptime,
            "messages_processed": self.message_count,
            "errors": self.error_count,
            "messages_per_minute": (self.message_count / uptime) * 60 if uptime > 0 else 0
        }


# Global metrics collector
metrics_collector = MetricsCollector()
