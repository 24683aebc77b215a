"""Maintenance endpoints for development.

Registered only when ``app_env`` is development. NOT for production use.
"""

from typing import Any, Dict

import structlog
from fastapi import APIRouter, HTTPException, status

from chatbot.orchestrator import get_orchestrator

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["Admin"])


@router.delete("/chatbot/cache")
async def clear_chatbot_cache() -> Dict[str, Any]:
    """Remove every semantic cache entry."""
    cache = await get_orchestrator().get_cache()
    if cache is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cache unavailable")

    deleted = await cache.clear_cache()
    logger.info("Semantic cache cleared via admin endpoint", deleted=deleted)
    return {"deleted": deleted}


@router.post("/chatbot/cost/reset")
async def reset_chatbot_cost() -> Dict[str, Any]:
    """Delete today's cost counter."""
    governor = await get_orchestrator().get_governor()
    if governor is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cost tracking unavailable")

    reset = await governor.reset_daily_cost()
    logger.info("Daily cost reset via admin endpoint", reset=reset)
    return {"reset": reset}
