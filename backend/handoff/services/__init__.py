"""
Services module for the handoff core.
Rate limiting, queueing, sessions, tickets, agents, assignment and SLAs.
"""

from .rate_limiter import RateLimiter
from .message_queue import MessageQueue
from .intent import HandoffIntent, IntentClassifier, KeywordIntentClassifier
from .session_manager import SessionManager
from .priority import PriorityAssessment, PriorityEngine
from .ticket_service import ALLOWED_TRANSITIONS, TicketService, check_transition
from .agent_pool import AgentPool
from .assignment import AssignmentEngine
from .sla_monitor import SLAMonitor, SweepReport
from .supervisor import SupervisorService, TimeRange
from .ai_collaborator import AICollaborator, AIResponse, HTTPAICollaborator, MockAICollaborator

__all__ = [
    # Gatekeeping
    'RateLimiter',
    'MessageQueue',

    # Conversation
    'HandoffIntent',
    'IntentClassifier',
    'KeywordIntentClassifier',
    'SessionManager',

    # Tickets
    'PriorityAssessment',
    'PriorityEngine',
    'TicketService',
    'ALLOWED_TRANSITIONS',
    'check_transition',
    'SLAMonitor',
    'SweepReport',

    # Agents
    'AgentPool',
    'AssignmentEngine',
    'SupervisorService',
    'TimeRange',

    # AI
    'AICollaborator',
    'AIResponse',
    'HTTPAICollaborator',
    'MockAICollaborator',
]
