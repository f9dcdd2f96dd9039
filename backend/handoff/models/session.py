"""
Session and message models.
A session is the TTL-bound state of one conversation: its language and a
bounded window of the most recent messages.

Version: 1.0.0
"""
import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..utils.clock import utcnow


class MessageRole(str, Enum):
    """Message role enumeration."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """One conversation message. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utcnow)


class SessionData(BaseModel):
    """
    Validated session state.

    Features:
    - Identifier and language validation
    - JSON-serializable metadata with a size cap
    - Timestamp consistency checks
    """

    owner_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Identity that owns the conversation"
    )

    session_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Conversation identifier"
    )

    language: str = Field(
        default="en",
        min_length=2,
        max_length=10,
        description="Conversation language code"
    )

    messages: List[Message] = Field(
        default_factory=list,
        description="Most recent messages, oldest first"
    )

    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional session metadata"
    )

    created_at: datetime = Field(default_factory=utcnow)

    last_activity: datetime = Field(default_factory=utcnow)

    @field_validator('language')
    @classmethod
    def normalize_language(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator('metadata')
    @classmethod
    def validate_metadata(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        """
        Ensure metadata is JSON-serializable and reasonably small.

        Raises:
            ValueError: If metadata is not serializable or exceeds 64KB
        """
        try:
            encoded = json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Metadata must be JSON-serializable: {e}")

        if len(encoded) > 65_536:
            raise ValueError("Metadata exceeds maximum size (64KB)")
        return v

    @model_validator(mode='after')
    def validate_timestamps(self) -> 'SessionData':
        """last_activity can never precede created_at."""
        if self.last_activity < self.created_at:
            raise ValueError("last_activity cannot be before created_at")
        return self

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def touch(self, now: Optional[datetime] = None) -> None:
        """Record activity on the session."""
        self.last_activity = max(now or utcnow(), self.created_at)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionData':
        return cls.model_validate(data)


__all__ = ['MessageRole', 'Message', 'SessionData']
