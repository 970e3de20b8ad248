"""Health check routes"""
from fastapi import APIRouter
from core.dependencies import get_bridge, get_event_hub, get_message_repo, get_watcher
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check"""
    return {"status": "ok", "service": "message-sync"}


@router.get("/health/store")
async def store_health():
    """Check that the store is readable and the command bridge is alive"""
    try:
        max_seq = await get_message_repo().max_seq()
        store = {"readable": True, "max_seq": max_seq}
    except Exception as e:
        logger.error(f"Store health check failed: {e}")
        store = {"readable": False, "error": str(e)}

    try:
        bridge_running = await get_bridge().is_running()
    except Exception as e:
        logger.error(f"Bridge liveness check failed: {e}")
        bridge_running = False

    watcher = get_watcher()
    healthy = store["readable"] and bridge_running
    return {
        "status": "ok" if healthy else "degraded",
        "store": store,
        "bridge": {"running": bridge_running},
        "watcher": {"running": watcher.running, "cursor": watcher.cursor},
        "subscribers": get_event_hub().client_count,
    }
