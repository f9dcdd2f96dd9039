"""
Rate limiting models.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..utils.clock import utcnow


class RateLimitWindow(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"

    @property
    def seconds(self) -> int:
        return 60 if self == RateLimitWindow.MINUTE else 3600


class RateLimitResult(BaseModel):
    """Outcome of one rate check."""

    allowed: bool
    remaining: int = Field(ge=0)
    retry_after: int = Field(default=0, ge=0, description="Seconds until the denying window resets")
    window: Optional[RateLimitWindow] = None
    limit: Optional[int] = None
    bypassed: bool = False
    degraded: bool = Field(default=False, description="Allowed because the store was unavailable")


class RateLimitViolation(BaseModel):
    """One denied call, kept in the owner's violation log."""

    owner_id: str
    window: RateLimitWindow
    limit: int
    count: int
    timestamp: datetime = Field(default_factory=utcnow)


class RateLimitStatus(BaseModel):
    """Current usage of an owner without consuming a call."""

    owner_id: str
    minute_count: int
    minute_limit: int
    minute_reset_in: int
    hour_count: int
    hour_limit: int
    hour_reset_in: int
    bypassed: bool


__all__ = ['RateLimitWindow', 'RateLimitResult', 'RateLimitViolation', 'RateLimitStatus']
