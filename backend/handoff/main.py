"""
FastAPI application entry point.
Builds the handoff core on startup, runs its background loops and closes
everything on shutdown.

Version: 1.0.0
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import APP_DESCRIPTION
from .api.routes import emergency, health, supervisor, tickets
from .api.websocket import agent_websocket, chat_websocket
from .config import settings as default_settings
from .config.settings import Settings
from .core import create_core
from .services.ai_collaborator import AICollaborator
from .store import CoordinationStore
from .utils.telemetry import setup_telemetry

logging.basicConfig(
    level=getattr(logging, default_settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CoordinationStore] = None,
    ai: Optional[AICollaborator] = None
) -> FastAPI:
    """
    Create the application.

    Args:
        settings: Settings to use instead of the environment
        store: Coordination store to use instead of the configured one
        ai: AI collaborator to use instead of the configured one
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # === STARTUP ===
        logger.info("=" * 60)
        logger.info(f"Starting {settings.app_name} v{settings.app_version}")
        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Instance: {settings.instance_id}")
        logger.info("=" * 60)

        core = create_core(settings, store=store, ai=ai)
        app.state.core = core

        try:
            if await core.store.ping():
                logger.info(f"✓ Coordination store connected ({settings.store_backend})")
            else:
                logger.warning(f"✗ Coordination store not answering ({settings.store_backend}), running degraded")
        except Exception as e:
            logger.warning(f"✗ Coordination store check failed: {e}")

        core.start()
        logger.info("✓ Application started successfully")

        yield  # === APPLICATION RUNS HERE ===

        # === SHUTDOWN ===
        logger.info("Shutting down application...")
        try:
            await core.stop()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)
        logger.info("✓ Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=APP_DESCRIPTION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    if settings.enable_telemetry:
        setup_telemetry(app)

    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(tickets.router, prefix="/api", tags=["Tickets"])
    app.include_router(supervisor.router, prefix="/api/supervisor", tags=["Supervisor"])
    app.include_router(emergency.router, prefix="/api/emergency", tags=["Emergency"])

    app.add_api_websocket_route("/ws/chat", chat_websocket, name="chat_websocket")
    app.add_api_websocket_route("/ws/agent", agent_websocket, name="agent_websocket")

    @app.get("/", tags=["Root"])
    async def root() -> Dict[str, Any]:
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "instance_id": settings.instance_id,
            "websockets": ["/ws/chat", "/ws/agent"],
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "handoff.main:app",
        host="0.0.0.0",
        port=8000,
        log_level=default_settings.log_level.lower()
    )
