"""
Health check API routes.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Request

from ... import __version__
from ...exceptions import StoreUnavailableError
from ...utils.clock import utcnow
from ...utils.telemetry import metrics_collector

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Health of the coordination store plus live counters of this instance.

    Returns:
        Overall status ("healthy" or "degraded") and per-component details
    """
    core = request.app.state.core
    services: Dict[str, Any] = {}
    status = "healthy"

    try:
        store_ok = await core.store.ping()
    except Exception as e:
        logger.error(f"Store health check failed: {e}")
        store_ok = False
    services["store"] = "healthy" if store_ok else "unhealthy"
    if not store_ok:
        status = "degraded"

    services["router"] = core.router.get_stats()

    try:
        services["queue"] = await core.queue.get_stats()
        services["agents"] = await core.pool.get_stats()
    except StoreUnavailableError as e:
        logger.warning(f"Health stats unavailable: {e}")
        status = "degraded"

    return {
        "status": status,
        "timestamp": utcnow().isoformat(),
        "version": __version__,
        "instance_id": core.settings.instance_id,
        "services": services,
        "metrics": metrics_collector.get_stats(),
    }


@router.get("/live")
async def liveness_check() -> Dict[str, Any]:
    return {"status": "alive", "timestamp": utcnow().isoformat()}
