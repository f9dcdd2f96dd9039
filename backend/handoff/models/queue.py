"""
Queued inbound message model.
"""
import uuid
from datetime import datetime
from typing import Any, Dict

from pydantic import BaseModel, Field

from ..utils.clock import utcnow


class QueuedMessage(BaseModel):
    """An inbound chat message waiting for the worker."""

    id: str = Field(default_factory=lambda: f"msg_{uuid.uuid4().hex}")
    owner_id: str = Field(..., min_length=1, max_length=255)
    session_id: str = Field(..., min_length=1, max_length=255)
    text: str
    language: str = "en"
    connection_id: str = Field(..., description="Connection that must receive the reply")
    enqueued_at: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QueuedMessage':
        return cls.model_validate(data)


__all__ = ['QueuedMessage']
