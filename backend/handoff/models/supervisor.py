"""
Supervisor report models.
Read-only aggregates over the agent pool and the ticket store.
"""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .agent import AgentStatus
from .ticket import QueueStatistics


class AgentPerformance(BaseModel):
    """Ticket outcomes of one agent over a reporting window."""

    agent_id: str
    tickets_assigned: int = 0
    tickets_resolved: int = 0
    resolution_rate: float = Field(default=0.0, description="Percent of assigned tickets the agent resolved")
    average_handle_seconds: Optional[float] = Field(
        None, description="Mean time from the agent's final assignment to resolution"
    )
    average_rating: Optional[float] = None
    feedback_count: int = 0


class AgentWorkload(BaseModel):
    """Current load of one agent."""

    agent_id: str
    status: AgentStatus
    department: Optional[str] = None
    active_chats: int = 0
    max_concurrent_chats: int = 1
    utilization_percent: float = 0.0
    resolved_tickets: int = 0


class TeamOverview(BaseModel):
    """Team-wide snapshot for the supervisor dashboard."""

    total_agents: int = 0
    agents_by_status: Dict[str, int] = Field(
        default_factory=lambda: {status.value: 0 for status in AgentStatus}
    )
    total_capacity: int = 0
    active_chats: int = 0
    utilization_percent: float = 0.0
    queue: QueueStatistics = Field(default_factory=QueueStatistics)
    total_tickets: int = Field(default=0, description="Tickets ever created")
    resolved_today: int = 0
    resolution_rate: float = Field(default=0.0, description="resolved_today as a percent of total_tickets")
    emergency_tickets: int = 0


class WorkloadDistribution(BaseModel):
    agents: List[AgentWorkload] = Field(default_factory=list)


__all__ = ['AgentPerformance', 'AgentWorkload', 'TeamOverview', 'WorkloadDistribution']
