"""
Validation schemas for inbound frames and HTTP requests.

Version: 1.0.0
"""

from .inbound import (
    # Client frames
    ConnectPayload,
    ChatMessagePayload,
    TypingPayload,
    RequestAgentPayload,
    FeedbackPayload,

    # Agent frames
    DashboardConnectPayload,
    StatusUpdatePayload,
    AcceptTicketPayload,
    ResolveTicketPayload,
    TransferTicketPayload,
    AgentMessagePayload,
    AgentTypingPayload,

    # HTTP
    FeedbackRequest,
    ReassignRequest,
    AgentStatusRequest,
    EmergencyResponseRequest,
)

__all__ = [
    # Client
    'ConnectPayload',
    'ChatMessagePayload',
    'TypingPayload',
    'RequestAgentPayload',
    'FeedbackPayload',

    # Agent
    'DashboardConnectPayload',
    'StatusUpdatePayload',
    'AcceptTicketPayload',
    'ResolveTicketPayload',
    'TransferTicketPayload',
    'AgentMessagePayload',
    'AgentTypingPayload',

    # HTTP
    'FeedbackRequest',
    'ReassignRequest',
    'AgentStatusRequest',
    'EmergencyResponseRequest',
]
