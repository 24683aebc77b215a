from __future__ import annotations

import asyncio
import time
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import ORJSONResponse

from chatbot.errors import ChatbotError
from chatbot.middleware.rate_limiter import enforce_query_rate_limits
from chatbot.models import ChatbotRequest, ErrorEnvelope, ErrorResponse
from chatbot.orchestrator import APOLOGY_MESSAGE, get_orchestrator
from chatbot.validation import validate_query
from libs.common.settings import get_settings

logger = structlog.get_logger(__name__)
router = APIRouter()


def _error(exc: ChatbotError) -> HTTPException:
    body = ErrorResponse(error_code=exc.error_code, message=exc.public_message)
    return HTTPException(status_code=exc.status_code, detail=body.model_dump(exclude_none=True))


ERROR_RESPONSES = {
    code: {"model": ErrorEnvelope, "description": description}
    for code, description in (
        (400, "Invalid query"),
        (429, "Rate limit exceeded"),
        (500, "Unexpected failure"),
        (502, "Classification failed"),
        (503, "Budget exceeded or collaborator unavailable"),
    )
}


@router.post(
    "/chatbot/query",
    tags=["Chatbot"],
    dependencies=[Depends(enforce_query_rate_limits)],
    responses=ERROR_RESPONSES,
)
async def chatbot_query(request: Request, chatbot_request: ChatbotRequest) -> ORJSONResponse:
    """Recommend products for a natural-language query.

    Conversation history, shown product ids and the reference product all come
    from the client; nothing is stored server-side.

    Example:
        ```bash
        curl -X POST http://localhost:8000/api/chatbot/query \\
          -H "Content-Type: application/json" \\
          -d '{"query": "Something fruitier", "referenceProductId": 42, "shownProductIds": [42]}'
        ```
    """
    start_time = time.time()
    settings = get_settings()

    try:
        sanitized = validate_query(chatbot_request.query, max_length=settings.query_max_length)
    except ChatbotError as e:
        raise _error(e) from e
    chatbot_request = chatbot_request.model_copy(update={"query": sanitized})

    orchestrator = get_orchestrator()
    try:
        # a client disconnect must not cancel collaborator calls mid-flight
        result = await asyncio.shield(orchestrator.run_query(chatbot_request))
    except ChatbotError as e:
        logger.warning(
            "Chatbot query failed",
            error_code=e.error_code,
            error=str(e),
            query_preview=sanitized[:50],
        )
        raise _error(e) from e
    except Exception as e:
        logger.error("Unexpected chatbot error", error=str(e), error_type=type(e).__name__, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=ErrorResponse(error_code="INTERNAL_ERROR", message=APOLOGY_MESSAGE).model_dump(exclude_none=True),
        ) from e

    logger.info(
        "Chatbot query served",
        trace_id=result.trace_id,
        cache_hit=result.cache_hit,
        outcome=result.response.outcome,
        products=len(result.response.products),
        process_time_ms=round((time.time() - start_time) * 1000, 2),
    )
    headers = {"X-Cache": "HIT" if result.cache_hit else "MISS"}
    if result.trace_id:
        headers["X-Trace-ID"] = result.trace_id
    return ORJSONResponse(content=result.response.to_wire(), headers=headers)


@router.get("/chatbot/stats", tags=["Chatbot"])
async def chatbot_stats() -> Dict[str, Any]:
    """Today's spend and semantic cache statistics."""
    orchestrator = get_orchestrator()
    stats: Dict[str, Any] = {"cost": None, "cache": None}

    governor = await orchestrator.get_governor()
    if governor is not None:
        cost = await governor.get_stats()
        stats["cost"] = {
            "current_cost": cost.current_cost,
            "daily_limit": cost.daily_limit,
            "cost_per_query": cost.cost_per_query,
            "query_count": cost.query_count,
            "remaining_budget": cost.remaining_budget,
            "remaining_queries": cost.remaining_queries,
            "is_over_budget": cost.is_over_budget,
        }

    cache_client = await orchestrator.get_cache()
    if cache_client is not None:
        cache = await cache_client.get_stats()
        stats["cache"] = {
            "hits": cache.hits,
            "misses": cache.misses,
            "total_requests": cache.total_requests,
            "hit_rate": cache.hit_rate,
            "entries": cache.entries,
            "similarity_threshold": cache.similarity_threshold,
            "ttl_seconds": cache.ttl_seconds,
            "enabled": cache.enabled,
        }

    return stats
