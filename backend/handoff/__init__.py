"""
Real-time handoff core.
Routes live conversations between an automated assistant and human agents.
"""

__version__ = "1.0.0"
__author__ = "Customer Support Platform Team"

# Application metadata
APP_NAME = "Handoff Core"
APP_DESCRIPTION = (
    "Ticket queue, agent assignment, session context and rate limiting "
    "for live support conversations"
)

__all__ = [
    "APP_NAME",
    "APP_DESCRIPTION",
    "__version__",
]
