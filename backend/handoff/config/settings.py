"""
Application settings for the handoff core.
Every tunable of the rate limiter, queue, sessions, tickets, SLA engine and
assignment engine lives here and can be overridden from the environment.

Version: 1.0.0
"""
import logging
import uuid
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Handoff core configuration.

    Values are read from environment variables (case-insensitive) and an
    optional ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===========================
    # Application
    # ===========================

    app_name: str = Field(
        default="Handoff Core",
        description="Application display name"
    )

    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )

    environment: str = Field(
        default="development",
        description="Deployment environment (development, testing, production)"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug logging"
    )

    log_level: str = Field(
        default="INFO",
        description="Root log level"
    )

    instance_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex[:12],
        description="Identifier of this service instance (names its message queue)"
    )

    cors_origins: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins"
    )

    # ===========================
    # Coordination Store
    # ===========================

    store_backend: str = Field(
        default="in_memory",
        description="Coordination store backend: in_memory or redis"
    )

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )

    redis_key_prefix: str = Field(
        default="handoff:",
        description="Prefix applied to every Redis key"
    )

    redis_max_connections: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Redis connection pool size"
    )

    redis_socket_timeout: int = Field(
        default=5,
        ge=1,
        le=60,
        description="Redis socket timeout in seconds"
    )

    store_cleanup_interval_seconds: int = Field(
        default=60,
        ge=5,
        le=3600,
        description="Interval of the in-memory store expiry cleanup"
    )

    # ===========================
    # Rate Limiting
    # ===========================

    rate_limit_enabled: bool = Field(
        default=True,
        description="Gate inbound chat messages through the rate limiter"
    )

    rate_limit_per_minute: int = Field(
        default=10,
        ge=1,
        le=10000,
        description="Messages allowed per owner per minute window"
    )

    rate_limit_per_hour: int = Field(
        default=100,
        ge=1,
        le=100000,
        description="Messages allowed per owner per hour window"
    )

    rate_limit_bypass: List[str] = Field(
        default_factory=list,
        description="Owner ids that are never rate limited"
    )

    rate_limit_violation_log_size: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Violations kept per owner"
    )

    rate_limit_violation_ttl_seconds: int = Field(
        default=7 * 24 * 3600,
        ge=60,
        description="How long violation logs are kept"
    )

    # ===========================
    # Message Queue
    # ===========================

    message_queue_max_size: int = Field(
        default=1000,
        ge=1,
        le=1_000_000,
        description="Maximum queued inbound messages per instance"
    )

    message_queue_poll_interval: float = Field(
        default=0.5,
        gt=0,
        le=10,
        description="Seconds the worker waits when its queue is empty"
    )

    max_message_length: int = Field(
        default=5000,
        ge=1,
        le=100000,
        description="Maximum characters in one inbound chat message"
    )

    # ===========================
    # Sessions & Context
    # ===========================

    session_ttl_seconds: int = Field(
        default=1800,
        ge=60,
        le=86400,
        description="Session lifetime since last activity"
    )

    context_max_messages: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Messages kept per session"
    )

    context_max_tokens: int = Field(
        default=2000,
        ge=1,
        le=200000,
        description="Token budget of the context window sent to the AI"
    )

    tokens_per_char: float = Field(
        default=0.25,
        gt=0,
        le=4,
        description="Estimated tokens per character"
    )

    context_summary_messages: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Messages rendered into a context summary"
    )

    session_encryption_key: Optional[SecretStr] = Field(
        default=None,
        description="Fernet key or passphrase; enables session encryption at rest"
    )

    # ===========================
    # Tickets, Priority & SLA
    # ===========================

    priority_weight_emergency: float = Field(default=0.6, ge=0, le=1)
    priority_weight_severity: float = Field(default=0.2, ge=0, le=1)
    priority_weight_department: float = Field(default=0.1, ge=0, le=1)
    priority_weight_wait: float = Field(default=0.1, ge=0, le=1)

    priority_wait_horizon_seconds: int = Field(
        default=1800,
        ge=1,
        description="Wait time at which the wait component saturates"
    )

    department_urgency: Dict[str, float] = Field(
        default_factory=lambda: {
            "emergency": 1.0,
            "security": 0.9,
            "billing": 0.5,
            "technical": 0.5,
            "general": 0.3,
        },
        description="Urgency in [0, 1] per department"
    )

    default_department_urgency: float = Field(default=0.3, ge=0, le=1)

    sla_response_minutes: Dict[str, int] = Field(
        default_factory=lambda: {"emergency": 2, "high": 5, "medium": 15, "low": 30},
        description="First-response deadline per priority level"
    )

    sla_resolution_minutes: Dict[str, int] = Field(
        default_factory=lambda: {"emergency": 15, "high": 60, "medium": 240, "low": 480},
        description="Resolution deadline per priority level"
    )

    sla_thresholds: List[float] = Field(
        default_factory=lambda: [0.75, 0.9, 1.0],
        description="Deadline fractions at which warnings and the breach fire"
    )

    sla_sweep_interval_seconds: int = Field(
        default=15,
        ge=1,
        le=3600,
        description="Interval of the SLA sweep"
    )

    feedback_base_url: str = Field(
        default="http://localhost:3000/feedback",
        description="Base URL of the customer feedback page"
    )

    # ===========================
    # Agents & Assignment
    # ===========================

    auto_assign: bool = Field(
        default=True,
        description="Assign new tickets automatically instead of waiting for acceptance"
    )

    assignment_weight_department: float = Field(default=0.5, ge=0, le=1)
    assignment_weight_language: float = Field(default=0.3, ge=0, le=1)
    assignment_weight_workload: float = Field(default=0.2, ge=0, le=1)

    default_max_concurrent_chats: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Concurrent chats for agents that do not state a limit"
    )

    heartbeat_interval_seconds: int = Field(
        default=30,
        ge=1,
        le=3600,
        description="Expected interval between agent heartbeats"
    )

    heartbeat_missed_limit: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Consecutive missed heartbeats before an agent goes offline"
    )

    # ===========================
    # AI Collaborator
    # ===========================

    ai_endpoint_url: Optional[str] = Field(
        default=None,
        description="HTTP endpoint of the reply generator; unset uses the mock"
    )

    ai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="Bearer token sent to the reply generator"
    )

    ai_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=300,
        description="Timeout of one reply generation call"
    )

    ai_confidence_threshold: float = Field(
        default=0.5,
        ge=0,
        le=1,
        description="Replies below this confidence hand the conversation off"
    )

    # ===========================
    # Telemetry
    # ===========================

    enable_telemetry: bool = Field(
        default=True,
        description="Expose Prometheus metrics on /metrics"
    )

    # ===========================
    # Validators
    # ===========================

    @field_validator('store_backend')
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        """Only the known store backends are accepted."""
        v = v.lower().strip()
        if v not in ('in_memory', 'redis'):
            raise ValueError(f"Unknown store backend: {v}")
        return v

    @field_validator('sla_thresholds')
    @classmethod
    def validate_sla_thresholds(cls, v: List[float]) -> List[float]:
        """
        Thresholds must be strictly increasing fractions ending at 1.0.

        Raises:
            ValueError: If the list is empty, unordered or does not end at 1.0
        """
        if not v:
            raise ValueError("At least one SLA threshold is required")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("SLA thresholds must be strictly increasing")
        if v[0] <= 0 or v[-1] != 1.0:
            raise ValueError("SLA thresholds must lie in (0, 1] and end at 1.0")
        return v

    @field_validator('sla_response_minutes', 'sla_resolution_minutes')
    @classmethod
    def validate_sla_minutes(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Every priority level needs a positive deadline."""
        missing = {"emergency", "high", "medium", "low"} - set(v)
        if missing:
            raise ValueError(f"SLA minutes missing levels: {sorted(missing)}")
        if any(minutes <= 0 for minutes in v.values()):
            raise ValueError("SLA minutes must be positive")
        return v

    # ===========================
    # Helpers
    # ===========================

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def get_session_encryption_key(self) -> Optional[str]:
        """
        Get the session encryption key value.

        Returns:
            Key string or None if encryption is disabled
        """
        if self.session_encryption_key:
            return self.session_encryption_key.get_secret_value()
        return None

    def get_ai_api_key(self) -> Optional[str]:
        if self.ai_api_key:
            return self.ai_api_key.get_secret_value()
        return None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Create global instance
settings = get_settings()

# Export
__all__ = ['Settings', 'get_settings', 'settings']
