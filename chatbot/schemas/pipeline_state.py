"""Pipeline state for the recommendation graph.

One PipelineState flows through every LangGraph node for a single request.
Nodes return partial updates; nothing here outlives the request.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from chatbot.models import (
    CandidateProduct,
    ChatbotRequest,
    ChatbotResponse,
    GraphContext,
    RankedRecommendation,
    RetrievalPlan,
)


class PipelineState(BaseModel):
    """Core state object for one chatbot request."""

    # Tracing
    trace_id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique trace identifier")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="State creation timestamp"
    )

    # Input
    request: ChatbotRequest = Field(description="Sanitized caller request")

    # 01_reference_context
    reference: Optional[CandidateProduct] = Field(default=None, description="Resolved reference product")
    graph_context: Optional[GraphContext] = Field(default=None, description="Catalog statistics for the reference")

    # 02_intent_classifier
    plan: Optional[RetrievalPlan] = Field(default=None, description="Classifier decision")

    # 03_tiered_retrieval
    candidates: List[CandidateProduct] = Field(default_factory=list, description="Shaped, capped candidates")
    retrieval_tier: Optional[str] = Field(default=None, description="Tier that produced the candidates")
    matched_count: int = Field(default=0, description="Matches before already-shown exclusion")
    shown_excluded: int = Field(default=0, description="Matches dropped because they were already shown")

    # 04_ranking
    recommendations: List[RankedRecommendation] = Field(default_factory=list)
    ranking_failed: bool = Field(default=False)

    # 05_response_composer
    response: Optional[ChatbotResponse] = Field(default=None)
    cacheable: bool = Field(default=False, description="True only for fully completed runs")

    # Performance tracking
    node_timings: Dict[str, float] = Field(default_factory=dict, description="Per-node execution times in ms")
