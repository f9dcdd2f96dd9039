"""
HTTP routes.
"""
from . import emergency, health, supervisor, tickets

__all__ = ['emergency', 'health', 'supervisor', 'tickets']
