"""Intent classification: user query -> RetrievalPlan via the reasoning service."""

import json
import time
from typing import Optional, Sequence

import structlog
from pydantic import ValidationError

from chatbot.errors import ClassificationError, ReasoningResponseError, ReasoningTransportError
from chatbot.llm.reasoning_client import ReasoningClient
from chatbot.models import CandidateProduct, ConversationTurn, GraphContext, RetrievalPlan
from chatbot.prompts import build_decision_prompt

logger = structlog.get_logger(__name__)


def parse_plan(content: str) -> RetrievalPlan:
    """Parse the reasoning service's JSON reply into a RetrievalPlan."""
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("Decision must be a JSON object")
    return RetrievalPlan.model_validate(data)


class IntentClassifier:
    """Builds the decision prompt, calls the reasoning service once, parses the plan.

    No retries happen here; transport retries belong to the client.
    """

    def __init__(self, reasoning_client: ReasoningClient):
        self.reasoning_client = reasoning_client

    async def classify(
        self,
        query: str,
        reference: Optional[CandidateProduct] = None,
        graph_context: Optional[GraphContext] = None,
        history: Sequence[ConversationTurn] = (),
    ) -> RetrievalPlan:
        start_time = time.time()
        system_prompt = build_decision_prompt(reference, graph_context)

        try:
            content = await self.reasoning_client.complete(system_prompt, history, query, force_json_object=True)
        except ReasoningTransportError as e:
            raise ClassificationError(f"Reasoning service unavailable: {e}", reached_service=False) from e
        except ReasoningResponseError as e:
            raise ClassificationError(f"Unusable classification response: {e}", reached_service=True) from e

        try:
            plan = parse_plan(content)
        except (ValueError, ValidationError) as e:
            logger.warning("Failed to parse classification", error=str(e), content_preview=content[:200])
            raise ClassificationError(f"Could not parse classification: {e}", reached_service=True) from e

        logger.info(
            "Intent classified",
            query_preview=query[:50],
            query_type=plan.query_type.value if plan.query_type else None,
            filters=plan.filters.model_dump(exclude_none=True),
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return plan
