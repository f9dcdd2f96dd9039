"""
Supervisor dashboard views.
Team overview, per-agent performance and workload, assembled from the
agent pool and the ticket store. Nothing here writes; reassignment goes
through the assignment engine.

Version: 1.0.0
"""
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from ..models.supervisor import AgentPerformance, TeamOverview, WorkloadDistribution
from ..utils.clock import Clock, utcnow
from .agent_pool import AgentPool
from .ticket_service import TicketService

logger = logging.getLogger(__name__)


class TimeRange(str, Enum):
    """Reporting windows for performance figures."""
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def window_start(time_range: TimeRange, now: datetime) -> Optional[datetime]:
    """First instant of ``time_range`` ending at ``now``; None for all time."""
    if time_range == TimeRange.TODAY:
        return start_of_day(now)
    if time_range == TimeRange.WEEK:
        return now - timedelta(days=7)
    if time_range == TimeRange.MONTH:
        return start_of_day(now).replace(day=1)
    return None


class SupervisorService:
    """Read-only aggregates for supervisors."""

    def __init__(self, tickets: TicketService, pool: AgentPool, clock: Clock = utcnow):
        self.tickets = tickets
        self.pool = pool
        self.clock = clock

    async def team_overview(self) -> TeamOverview:
        """
        Agents by status, capacity use, the live queue and today's resolutions.

        "Today" is the current UTC day.
        """
        now = self.clock()
        agent_stats = await self.pool.get_stats()
        total_tickets = await self.tickets.count_created()
        resolved_today = len(await self.tickets.resolved_since(start_of_day(now)))

        return TeamOverview(
            total_agents=agent_stats["total_agents"],
            agents_by_status=agent_stats["by_status"],
            total_capacity=agent_stats["total_capacity"],
            active_chats=agent_stats["active_chats"],
            utilization_percent=agent_stats["utilization_percent"],
            queue=await self.tickets.get_queue_statistics(),
            total_tickets=total_tickets,
            resolved_today=resolved_today,
            resolution_rate=round(resolved_today / total_tickets * 100, 1) if total_tickets else 0.0,
            emergency_tickets=len(await self.tickets.get_emergency_tickets())
        )

    async def agent_performance(self, time_range: TimeRange = TimeRange.WEEK) -> List[AgentPerformance]:
        """Performance of every registered agent over ``time_range``, in join order."""
        since = window_start(time_range, self.clock())
        return [
            await self.tickets.agent_performance(agent.agent_id, since)
            for agent in await self.pool.list_agents()
        ]

    async def workload_distribution(self) -> WorkloadDistribution:
        """Current load per agent, busiest first, with all-time resolved counts."""
        rows = await self.pool.get_workload_distribution()
        for row in rows:
            row.resolved_tickets = (await self.tickets.agent_performance(row.agent_id)).tickets_resolved
        return WorkloadDistribution(agents=rows)


__all__ = ['SupervisorService', 'TimeRange', 'window_start']
