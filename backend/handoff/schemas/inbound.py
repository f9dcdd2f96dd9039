"""
Pydantic schemas for inbound frames and HTTP requests.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.agent import AgentStatus


# Client frames

class ConnectPayload(BaseModel):
    """Client joins a conversation."""
    owner_id: str = Field(..., min_length=1, max_length=255)
    session_id: str = Field(..., min_length=1, max_length=255)
    language: str = Field(default="en", min_length=2, max_length=10)

    @field_validator('session_id')
    @classmethod
    def validate_session_id(cls, v: str) -> str:
        if v.strip() in ("", "undefined", "null"):
            raise ValueError("session_id is required")
        return v.strip()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"owner_id": "user123", "session_id": "sess_abc", "language": "en"}
        }
    )


class ChatMessagePayload(BaseModel):
    """
    Chat text from a client.

    Emptiness and length are checked by the gateway, which reports them
    with their own error codes.
    """
    text: str
    owner_id: Optional[str] = Field(None, max_length=255)
    session_id: Optional[str] = Field(None, max_length=255)
    language: Optional[str] = Field(None, min_length=2, max_length=10)


class TypingPayload(BaseModel):
    is_typing: bool = True


class RequestAgentPayload(BaseModel):
    """Explicit request for a human."""
    reason: str = Field(default="Customer requested a human agent", max_length=500)
    department: Optional[str] = Field(None, max_length=100)
    severity: Optional[int] = Field(None, ge=1, le=5)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"reason": "Billing dispute", "department": "billing", "severity": 4}
        }
    )


class FeedbackPayload(BaseModel):
    ticket_id: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)


# Agent frames

class DashboardConnectPayload(BaseModel):
    """Agent dashboard comes online."""
    agent_id: str = Field(..., min_length=1, max_length=255)
    department: Optional[str] = Field(None, max_length=100)
    skills: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    max_concurrent_chats: Optional[int] = Field(None, ge=1, le=100)
    is_supervisor: bool = False

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "agent_id": "agent_7",
                "department": "billing",
                "skills": ["refunds"],
                "languages": ["en", "es"],
                "max_concurrent_chats": 3
            }
        }
    )


class StatusUpdatePayload(BaseModel):
    status: AgentStatus


class AcceptTicketPayload(BaseModel):
    ticket_id: str = Field(..., min_length=1)


class ResolveTicketPayload(BaseModel):
    ticket_id: str = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=1000)


class TransferTicketPayload(BaseModel):
    ticket_id: str = Field(..., min_length=1)
    target_agent_id: str = Field(..., min_length=1, max_length=255)
    reason: str = Field(default="transferred", max_length=500)


class AgentMessagePayload(BaseModel):
    ticket_id: str = Field(..., min_length=1)
    text: str


class AgentTypingPayload(BaseModel):
    ticket_id: str = Field(..., min_length=1)
    is_typing: bool = True


# HTTP requests

class FeedbackRequest(BaseModel):
    """Feedback submitted from the feedback page."""
    owner_id: str = Field(..., min_length=1, max_length=255)
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=500)

    @field_validator('comment')
    @classmethod
    def strip_comment(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class ReassignRequest(BaseModel):
    """Supervisor reassignment of one ticket."""
    agent_id: str = Field(..., min_length=1, max_length=255)
    reason: str = Field(default="supervisor reassignment", min_length=1, max_length=500)


class AgentStatusRequest(BaseModel):
    status: AgentStatus


class EmergencyResponseRequest(BaseModel):
    """Agent confirming the first response on an urgent ticket."""
    agent_id: str = Field(..., min_length=1, max_length=255)


__all__ = [
    'ConnectPayload',
    'ChatMessagePayload',
    'TypingPayload',
    'RequestAgentPayload',
    'FeedbackPayload',
    'DashboardConnectPayload',
    'StatusUpdatePayload',
    'AcceptTicketPayload',
    'ResolveTicketPayload',
    'TransferTicketPayload',
    'AgentMessagePayload',
    'AgentTypingPayload',
    'FeedbackRequest',
    'ReassignRequest',
    'AgentStatusRequest',
    'EmergencyResponseRequest',
]
