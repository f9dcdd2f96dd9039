"""
SLA monitor.
A timer-driven sweep over open tickets that announces warning and breach
thresholds of the response and resolution deadlines exactly once.

Version: 1.0.0
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from ..models.ticket import DeadlineKind, Ticket, TicketStatus
from ..store import CoordinationStore, DistributedLock
from ..utils.clock import Clock, utcnow
from ..utils.telemetry import track_sla_event
from .ticket_service import TicketService

if TYPE_CHECKING:
    from ..realtime.notifications import TicketNotifier

logger = logging.getLogger(__name__)

SWEEP_LOCK = "sla:sweep"


@dataclass
class SweepReport:
    """Outcome of one sweep."""
    evaluated: int = 0
    notifications: int = 0
    escalations: int = 0
    failures: int = 0
    skipped: bool = False


class SLAMonitor:
    """
    Periodic deadline evaluation.

    Each deadline's progress is elapsed / (deadline - created_at). When it
    reaches a threshold above the ticket's checkpoint, the monitor advances
    the checkpoint with a conditional update and only the caller that won
    that update emits the event. A sweep that jumped past several
    thresholds announces each of them, lowest first.
    """

    def __init__(
        self,
        tickets: TicketService,
        notifier: Optional['TicketNotifier'] = None,
        thresholds: Sequence[float] = (0.75, 0.9, 1.0),
        store: Optional[CoordinationStore] = None,
        lock_timeout: int = 60,
        clock: Clock = utcnow
    ):
        """
        Initialize SLA monitor.

        Args:
            tickets: Ticket state machine
            notifier: Routes warning, breach and escalation events
            thresholds: Deadline fractions to announce, ascending, last is the breach
            store: When given, sweeps take a lease so one instance sweeps at a time
            lock_timeout: Lease duration in seconds
            clock: Source of the current time
        """
        self.tickets = tickets
        self.notifier = notifier
        self.thresholds = sorted(thresholds)
        self.store = store
        self.lock_timeout = lock_timeout
        self.clock = clock

        logger.info(f"SLAMonitor initialized (thresholds={self.thresholds})")

    @staticmethod
    def tracked_deadlines(ticket: Ticket) -> List[DeadlineKind]:
        """Response is tracked until an agent first responds; resolution while open."""
        if not ticket.is_open:
            return []
        kinds = []
        if ticket.responded_at is None:
            kinds.append(DeadlineKind.RESPONSE)
        kinds.append(DeadlineKind.RESOLUTION)
        return kinds

    def progress(self, ticket: Ticket, kind: DeadlineKind, now: datetime) -> float:
        window = (ticket.sla.deadline(kind) - ticket.created_at).total_seconds()
        elapsed = (now - ticket.created_at).total_seconds()
        if window <= 0:
            return float("inf")
        return elapsed / window

    def due_thresholds(self, ticket: Ticket, kind: DeadlineKind, now: datetime) -> List[float]:
        """Crossed thresholds above the checkpoint, ascending."""
        progress = self.progress(ticket, kind, now)
        notified = ticket.sla.notified(kind)
        return [t for t in self.thresholds if notified < t <= progress]

    def is_breach(self, threshold: float) -> bool:
        return threshold >= self.thresholds[-1]

    async def evaluate(self, ticket: Ticket, now: datetime) -> List[Tuple[DeadlineKind, float]]:
        """
        Announce any newly crossed threshold of one ticket.

        Returns:
            (deadline, threshold) pairs this call announced
        """
        announced = []
        for kind in self.tracked_deadlines(ticket):
            for threshold in self.due_thresholds(ticket, kind, now):
                updated = await self._announce(ticket, kind, threshold, now)
                if updated is None:
                    # Announced by another sweep, or the ticket closed meanwhile
                    continue
                announced.append((kind, threshold))
                ticket = updated

        return announced

    async def _announce(
        self,
        ticket: Ticket,
        kind: DeadlineKind,
        threshold: float,
        now: datetime
    ) -> Optional[Ticket]:
        """Win the checkpoint for one threshold and emit its event."""
        breach = self.is_breach(threshold)
        escalate = breach and kind == DeadlineKind.RESPONSE and ticket.status == TicketStatus.WAITING

        updated = await self.tickets.record_sla_notification(ticket.id, kind, threshold, escalate=escalate)
        if updated is None:
            return None

        track_sla_event(kind.value, "breach" if breach else "warning")
        if breach:
            logger.warning(f"SLA breach: ticket {ticket.id} missed its {kind.value} deadline")
        else:
            logger.info(f"SLA warning: ticket {ticket.id} at {threshold:.0%} of its {kind.value} deadline")

        if self.notifier is not None:
            await self.notifier.sla_event(updated, kind, threshold, now)
        return updated

    async def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Evaluate every open ticket; a failing ticket does not stop the others."""
        report = SweepReport()
        lock = None

        if self.store is not None:
            lock = DistributedLock(self.store, SWEEP_LOCK, timeout=self.lock_timeout)
            if not await lock.acquire(blocking=False):
                logger.debug("SLA sweep already running on another instance")
                report.skipped = True
                return report

        try:
            now = now or self.clock()
            for ticket in await self.tickets.list_open():
                report.evaluated += 1
                try:
                    announced = await self.evaluate(ticket, now)
                except Exception as e:
                    report.failures += 1
                    logger.error(f"SLA evaluation failed for ticket {ticket.id}: {e}", exc_info=True)
                    continue

                report.notifications += len(announced)
                report.escalations += sum(
                    1 for kind, threshold in announced
                    if kind == DeadlineKind.RESPONSE and self.is_breach(threshold)
                    and ticket.status == TicketStatus.WAITING
                )
        finally:
            if lock is not None:
                await lock.release()

        if report.notifications or report.failures:
            logger.info(
                f"SLA sweep: evaluated={report.evaluated}, notifications={report.notifications}, "
                f"escalations={report.escalations}, failures={report.failures}"
            )
        return report

    async def run(self, shutdown_event: asyncio.Event, interval: float) -> None:
        """Background loop calling sweep every ``interval`` seconds."""
        logger.info(f"✓ SLA monitor started (interval={interval}s)")
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"SLA sweep error: {e}", exc_info=True)

        logger.info("SLA monitor stopped")


__all__ = ['SLAMonitor', 'SweepReport', 'SWEEP_LOCK']
