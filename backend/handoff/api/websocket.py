"""
WebSocket endpoints for customers and agent dashboards.
Each socket is wrapped in a Connection and its JSON frames are handed to
the chat gateway.
"""
import json
import logging
import uuid
from typing import Any, Dict

from fastapi import WebSocket, WebSocketDisconnect

from ..realtime.gateway import ChatGateway
from ..realtime.router import Connection
from ..utils.clock import utcnow

logger = logging.getLogger(__name__)


class WebSocketConnection(Connection):
    """Connection backed by a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket, connection_id: str):
        super().__init__(connection_id)
        self.websocket = websocket

    async def send(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_json(message)


def _gateway(websocket: WebSocket) -> ChatGateway:
    return websocket.app.state.core.gateway


async def _receive_frames(websocket: WebSocket, connection: WebSocketConnection, handle) -> None:
    """Read frames until the peer disconnects, answering pings locally."""
    while True:
        try:
            data = await websocket.receive_text()
        except WebSocketDisconnect:
            break

        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            await websocket.send_json({
                "type": "chatError",
                "payload": {"code": "INVALID_PAYLOAD", "message": "Invalid JSON"},
                "timestamp": utcnow().isoformat()
            })
            continue

        if isinstance(frame, dict) and frame.get("type") == "ping":
            await websocket.send_json({"type": "pong", "timestamp": utcnow().isoformat()})
            continue

        await handle(connection, frame)


async def chat_websocket(websocket: WebSocket):
    """Customer socket: connect, message, typing, requestAgent, disconnect, submitFeedback."""
    gateway = _gateway(websocket)
    connection = WebSocketConnection(websocket, f"conn_{uuid.uuid4().hex}")

    await websocket.accept()
    gateway.router.register(connection)
    logger.info(f"Chat socket {connection.connection_id} opened")

    try:
        await _receive_frames(websocket, connection, gateway.handle_client_frame)
    except Exception as e:
        logger.error(f"Chat socket {connection.connection_id} error: {e}", exc_info=True)
    finally:
        gateway.connection_closed(connection)
        logger.info(f"Chat socket {connection.connection_id} closed")


async def agent_websocket(websocket: WebSocket):
    """Agent dashboard socket."""
    gateway = _gateway(websocket)
    connection = WebSocketConnection(websocket, f"agent_{uuid.uuid4().hex}")

    await websocket.accept()
    gateway.router.register(connection)
    logger.info(f"Agent socket {connection.connection_id} opened")

    try:
        await _receive_frames(websocket, connection, gateway.handle_agent_frame)
    except Exception as e:
        logger.error(f"Agent socket {connection.connection_id} error: {e}", exc_info=True)
    finally:
        await gateway.agent_disconnected(connection)
        logger.info(f"Agent socket {connection.connection_id} closed (agent={connection.agent_id})")


__all__ = ['WebSocketConnection', 'chat_websocket', 'agent_websocket']
