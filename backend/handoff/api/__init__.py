"""
Transport adapters: HTTP routes and WebSocket endpoints.
"""
from .websocket import WebSocketConnection, agent_websocket, chat_websocket

__all__ = ['WebSocketConnection', 'agent_websocket', 'chat_websocket']
