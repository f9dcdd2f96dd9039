"""
Ticket models.
A ticket is one request for human assistance, from handoff trigger to
resolution or cancellation. Terminal tickets are retained for audit and
feedback.

Version: 1.0.0
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.clock import utcnow
from .session import Message


class TicketStatus(str, Enum):
    """Ticket lifecycle states."""
    WAITING = "waiting"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TicketStatus.RESOLVED, TicketStatus.CANCELLED)


class PriorityLevel(str, Enum):
    """Discrete priority, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]

    def raised(self) -> 'PriorityLevel':
        """Next level up, saturating at EMERGENCY."""
        return _PRIORITY_ORDER[min(self.rank + 1, len(_PRIORITY_ORDER) - 1)]


_PRIORITY_ORDER = [
    PriorityLevel.LOW,
    PriorityLevel.MEDIUM,
    PriorityLevel.HIGH,
    PriorityLevel.EMERGENCY,
]
_PRIORITY_RANK = {level: rank for rank, level in enumerate(_PRIORITY_ORDER)}


class HandoffTrigger(str, Enum):
    """What caused the handoff."""
    EXPLICIT = "explicit"
    KEYWORD = "keyword"
    LOW_CONFIDENCE = "low_confidence"


class AssignmentMethod(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    TRANSFER = "transfer"


class DeadlineKind(str, Enum):
    """SLA deadlines tracked per ticket."""
    RESPONSE = "response"
    RESOLUTION = "resolution"


class SLAData(BaseModel):
    """Deadlines and the notification checkpoint of one ticket."""

    response_deadline: datetime
    resolution_deadline: datetime
    escalation_level: int = Field(default=0, ge=0)
    last_notified_threshold: Dict[str, float] = Field(
        default_factory=lambda: {kind.value: 0.0 for kind in DeadlineKind},
        description="Highest threshold fraction already announced, per deadline"
    )
    is_overdue: bool = False

    def notified(self, kind: DeadlineKind) -> float:
        return self.last_notified_threshold.get(kind.value, 0.0)

    def deadline(self, kind: DeadlineKind) -> datetime:
        if kind == DeadlineKind.RESPONSE:
            return self.response_deadline
        return self.resolution_deadline


class AssignmentRecord(BaseModel):
    """One stint of an agent on a ticket."""

    agent_id: str
    assigned_at: datetime
    unassigned_at: Optional[datetime] = None
    reason: Optional[str] = Field(None, max_length=500)
    method: AssignmentMethod = AssignmentMethod.AUTO


class Feedback(BaseModel):
    """Customer rating of a resolved ticket."""

    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)
    submitted_at: datetime = Field(default_factory=utcnow)


class EmergencyResponse(BaseModel):
    """First agent response on a high or emergency ticket."""

    agent_id: str
    responded_at: datetime
    response_seconds: float = Field(..., ge=0.0)
    within_sla: bool


class DeadlineStatus(str, Enum):
    """Share of the current deadline already used: <60%, <80%, <100%, past it."""
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"
    EXCEEDED = "exceeded"


class SLAStatus(BaseModel):
    """Snapshot of a ticket against the deadline that currently applies."""

    kind: DeadlineKind
    status: DeadlineStatus
    deadline: datetime
    seconds_remaining: float
    percent_elapsed: float


class Ticket(BaseModel):
    """
    Validated ticket record.

    Invariants checked on every validation:
    - assigned_agent_id is set exactly when status is assigned
    - resolved_at is set exactly when status is resolved
    """

    id: str = Field(default_factory=lambda: f"tkt_{uuid.uuid4().hex}")
    owner_id: str = Field(..., min_length=1, max_length=255)
    conversation_ref: str = Field(..., min_length=1, max_length=255)
    status: TicketStatus = TicketStatus.WAITING

    priority_score: float = Field(default=0.0, ge=0.0, le=1.0)
    priority_level: PriorityLevel = PriorityLevel.MEDIUM
    reason: str = Field(default="", max_length=500)
    trigger: HandoffTrigger = HandoffTrigger.EXPLICIT
    department: Optional[str] = Field(None, max_length=100)
    language: str = Field(default="en", min_length=2, max_length=10)
    severity: Optional[int] = Field(None, ge=1, le=5)

    context_snapshot: Tuple[Message, ...] = ()

    assigned_agent_id: Optional[str] = None
    assigned_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = Field(None, max_length=1000)
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = Field(None, max_length=500)

    sla: SLAData
    assignment_history: List[AssignmentRecord] = Field(default_factory=list)
    feedback: Optional[Feedback] = None
    feedback_requested: bool = False
    emergency_response: Optional[EmergencyResponse] = None

    sequence: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('reason')
    @classmethod
    def strip_reason(cls, v: str) -> str:
        return v.strip()

    @model_validator(mode='after')
    def validate_status_fields(self) -> 'Ticket':
        """Status-dependent fields must agree with the status."""
        if (self.assigned_agent_id is not None) != (self.status == TicketStatus.ASSIGNED):
            raise ValueError(
                f"assigned_agent_id must be set exactly when status is assigned "
                f"(status={self.status.value})"
            )
        if (self.resolved_at is not None) != (self.status == TicketStatus.RESOLVED):
            raise ValueError(
                f"resolved_at must be set exactly when status is resolved "
                f"(status={self.status.value})"
            )
        return self

    @property
    def is_open(self) -> bool:
        return not self.status.is_terminal

    @property
    def is_urgent(self) -> bool:
        return self.priority_level in (PriorityLevel.HIGH, PriorityLevel.EMERGENCY)

    @property
    def queue_score(self) -> float:
        """Waiting-queue score: higher level first, FIFO by sequence within a level."""
        return (PriorityLevel.EMERGENCY.rank - self.priority_level.rank) * 1e12 + self.sequence

    def current_assignment(self) -> Optional[AssignmentRecord]:
        for record in reversed(self.assignment_history):
            if record.unassigned_at is None:
                return record
        return None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Ticket':
        return cls.model_validate(data)

    def checked(self) -> Dict[str, Any]:
        """Re-run validation after in-place changes and return the stored form."""
        return Ticket.model_validate(self.model_dump()).to_dict()


class QueueStatistics(BaseModel):
    """Aggregate queue view sent to supervisors."""

    total_tickets: int = 0
    waiting_tickets: int = 0
    assigned_tickets: int = 0
    average_wait_seconds: float = 0.0
    longest_wait_seconds: float = 0.0
    queue_by_priority: Dict[str, int] = Field(
        default_factory=lambda: {level.value: 0 for level in PriorityLevel}
    )


__all__ = [
    'TicketStatus',
    'PriorityLevel',
    'HandoffTrigger',
    'AssignmentMethod',
    'DeadlineKind',
    'SLAData',
    'AssignmentRecord',
    'Feedback',
    'EmergencyResponse',
    'DeadlineStatus',
    'SLAStatus',
    'Ticket',
    'QueueStatistics',
]
