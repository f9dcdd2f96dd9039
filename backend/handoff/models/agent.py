"""
Agent model.
Agent records mutate on heartbeat and status events and on assignment.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.clock import utcnow


class AgentStatus(str, Enum):
    """Agent availability."""
    AVAILABLE = "available"
    BUSY = "busy"
    AWAY = "away"
    OFFLINE = "offline"


class Agent(BaseModel):
    """Validated agent record. active_chats never exceeds max_concurrent_chats."""

    agent_id: str = Field(..., min_length=1, max_length=255)
    status: AgentStatus = AgentStatus.AVAILABLE
    department: Optional[str] = Field(None, max_length=100)
    languages: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    max_concurrent_chats: int = Field(default=5, ge=1, le=100)
    active_chats: int = Field(default=0, ge=0)
    is_supervisor: bool = False

    last_heartbeat: datetime = Field(default_factory=utcnow)
    joined_at: datetime = Field(default_factory=utcnow)
    join_sequence: int = Field(default=0, ge=0)
    last_assigned_at: Optional[datetime] = None

    @field_validator('languages')
    @classmethod
    def normalize_languages(cls, v: List[str]) -> List[str]:
        return sorted({lang.strip().lower() for lang in v if lang and lang.strip()})

    @model_validator(mode='after')
    def validate_capacity(self) -> 'Agent':
        if self.active_chats > self.max_concurrent_chats:
            raise ValueError(
                f"active_chats ({self.active_chats}) exceeds "
                f"max_concurrent_chats ({self.max_concurrent_chats})"
            )
        return self

    @property
    def has_capacity(self) -> bool:
        return self.active_chats < self.max_concurrent_chats

    @property
    def idle_since(self) -> datetime:
        """Start of the current idle stretch, used to prefer the longest-idle agent."""
        return self.last_assigned_at or self.joined_at

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Agent':
        return cls.model_validate(data)


__all__ = ['AgentStatus', 'Agent']
