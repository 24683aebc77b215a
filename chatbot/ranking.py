"""
Ranking & Explanation stage.

Asks the reasoning service to order the shaped candidates and justify each
one. Returned ids are resolved against the candidates that were sent; any
id that is not among them is dropped, and so are repeats.
"""

import json
import time
from typing import Any, Dict, List, Optional, Sequence

import structlog

from chatbot.errors import RankingError, ReasoningResponseError, ReasoningTransportError
from chatbot.llm.reasoning_client import ReasoningClient
from chatbot.models import CandidateProduct, ConversationTurn, RankedRecommendation
from chatbot.prompts import RANKING_USER_MESSAGE, build_ranking_prompt

logger = structlog.get_logger(__name__)


def _coerce_id(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def resolve_rankings(
    ranked_items: Sequence[Dict[str, Any]],
    candidates: Sequence[CandidateProduct],
) -> List[RankedRecommendation]:
    """Map ranked ``{productId, reason}`` items back onto the original candidates."""
    by_id = {c.id: c for c in candidates}
    recommendations: List[RankedRecommendation] = []
    used = set()

    for item in ranked_items:
        if not isinstance(item, dict):
            continue
        product_id = _coerce_id(item.get("productId"))
        if product_id is None or product_id not in by_id or product_id in used:
            if product_id is not None and product_id not in by_id:
                logger.warning("Ranking returned unknown product id, dropping", product_id=product_id)
            continue
        used.add(product_id)
        reason = item.get("reason")
        recommendations.append(
            RankedRecommendation.from_candidate(
                by_id[product_id],
                reason=str(reason) if reason is not None else None,
                rank=len(recommendations) + 1,
            )
        )
    return recommendations


class Ranker:
    """Second reasoning-service call: order and explain candidates."""

    def __init__(self, reasoning_client: ReasoningClient):
        self.reasoning_client = reasoning_client

    async def rank(
        self,
        query: str,
        candidates: Sequence[CandidateProduct],
        reference: Optional[CandidateProduct] = None,
        history: Sequence[ConversationTurn] = (),
    ) -> List[RankedRecommendation]:
        if not candidates:
            # nothing to rank, so no reasoning-service call
            return []

        start_time = time.time()
        system_prompt = build_ranking_prompt(query, candidates, reference)

        try:
            content = await self.reasoning_client.complete(
                system_prompt, history, RANKING_USER_MESSAGE, force_json_object=True
            )
            data = json.loads(content)
        except (ReasoningTransportError, ReasoningResponseError, ValueError) as e:
            raise RankingError(f"Ranking failed: {e}") from e

        ranked_items = data.get("products") if isinstance(data, dict) else None
        if not isinstance(ranked_items, list):
            raise RankingError("Ranking response has no products array")

        recommendations = resolve_rankings(ranked_items, candidates)
        logger.info(
            "Ranking completed",
            candidates=len(candidates),
            returned=len(ranked_items),
            kept=len(recommendations),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return recommendations
