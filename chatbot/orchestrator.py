"""Recommendation orchestrator using LangGraph.

Routes one chatbot request through a graph of numbered nodes:

    01_reference_context -> 02_intent_classifier -> 03_tiered_retrieval
        -> 04_ranking (only when there are candidates) -> 05_response_composer

and wraps the graph with the semantic cache and the daily cost governor.
No conversation state is kept server-side; the graph is compiled without a
checkpointer.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

import structlog
from langgraph.graph import END, StateGraph

from chatbot.errors import (
    BudgetExceededError,
    ClassificationError,
    GraphExecutorError,
    RankingError,
)
from chatbot.graph.catalog import InMemoryGraphExecutor
from chatbot.graph.executor import GraphQueryExecutor
from chatbot.intent_classifier import IntentClassifier
from chatbot.llm.embedding_client import EmbeddingClient
from chatbot.llm.reasoning_client import ReasoningClient
from chatbot.models import ChatbotRequest, ChatbotResponse, RankedRecommendation
from chatbot.ranking import Ranker
from chatbot.retrieval.engine import RetrievalEngine
from chatbot.schemas.pipeline_state import PipelineState
from libs.caching.semantic_cache import SemanticCache
from libs.common.settings import Settings, get_settings
from libs.cost.governor import CostGovernor

logger = structlog.get_logger(__name__)

NO_MATCH_MESSAGE = (
    "Sorry, I couldn't find any products matching your request. Try adjusting your filters "
    "(e.g., price range, origin, roast level) or explore different flavor profiles."
)
ALL_SHOWN_MESSAGE = (
    "All matching products have already been shown. "
    "Try exploring different characteristics or asking for something new!"
)
APOLOGY_MESSAGE = "Sorry, I encountered an error processing your request. Please try again."

CACHEABLE_OUTCOMES = frozenset({"recommendations", "no_match", "all_shown"})


@dataclass
class PipelineResult:
    """What the router needs from one run."""

    response: ChatbotResponse
    cache_hit: bool = False
    cache_similarity: Optional[float] = None
    trace_id: Optional[str] = None


class ChatbotOrchestrator:
    """Main orchestrator for recommendation requests."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        executor: Optional[GraphQueryExecutor] = None,
        reasoning_client: Optional[ReasoningClient] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        cache: Optional[SemanticCache] = None,
        governor: Optional[CostGovernor] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.executor = executor if executor is not None else self._load_executor(s)
        self.reasoning_client = reasoning_client or ReasoningClient(
            api_key=s.llm_api_key,
            base_url=s.llm_base_url,
            model=s.llm_model,
            temperature=s.llm_temperature,
            max_tokens=s.llm_max_tokens,
            timeout_seconds=s.llm_timeout_seconds,
        )
        self.classifier = IntentClassifier(self.reasoning_client)
        self.ranker = Ranker(self.reasoning_client)
        self.retrieval = RetrievalEngine(
            self.executor,
            max_candidates=s.max_candidates,
            fetch_limit=s.graph_fetch_limit,
            timeout_seconds=s.graph_timeout_seconds,
        )

        self.cache = cache
        if embedding_client is None and s.embedding_api_key:
            embedding_client = EmbeddingClient(
                api_key=s.embedding_api_key,
                base_url=s.embedding_base_url,
                model=s.embedding_model,
                timeout_seconds=s.embedding_timeout_seconds,
            )
        if self.cache is None and s.cache_enabled and embedding_client is not None:
            self.cache = SemanticCache(
                redis_url=s.redis_url,
                embedding_client=embedding_client,
                similarity_threshold=s.cache_similarity_threshold,
                default_ttl=s.cache_ttl_seconds,
            )
            logger.info("Semantic cache initialized", similarity_threshold=s.cache_similarity_threshold)
        elif self.cache is None:
            logger.info("Caching disabled", cache_enabled=s.cache_enabled, embedding_configured=embedding_client is not None)

        self.governor = governor
        self.graph = self._build_graph()

    @staticmethod
    def _load_executor(settings: Settings) -> GraphQueryExecutor:
        if settings.catalog_path:
            return InMemoryGraphExecutor.from_json_file(settings.catalog_path)
        logger.warning("No catalog configured, graph executor is empty")
        return InMemoryGraphExecutor([])

    async def _ensure_cache_connected(self):
        """Ensure cache is connected (lazy initialization)."""
        if self.cache and self.cache._redis_client is None:
            try:
                await self.cache.connect()
                logger.info("Cache connected on first use")
            except Exception as e:
                logger.warning("Failed to connect cache", error=str(e))
                self.cache = None

    async def get_cache(self) -> Optional[SemanticCache]:
        """Connected semantic cache, or None when disabled or unreachable."""
        await self._ensure_cache_connected()
        return self.cache

    async def get_governor(self) -> Optional[CostGovernor]:
        """Build the cost governor on the shared Redis client (lazy initialization)."""
        if self.governor is None:
            from libs.caching.redis_client import get_redis_client

            client = await get_redis_client()
            if client is None:
                logger.error("Redis unavailable, cost governor disabled")
                return None
            s = self.settings
            self.governor = CostGovernor(
                client,
                daily_limit=s.daily_cost_limit,
                cost_per_query=s.cost_per_query,
                alert_ratio=s.cost_alert_ratio,
            )
        return self.governor

    def _build_graph(self):
        """Build and compile the LangGraph state machine."""
        graph = StateGraph(PipelineState)

        graph.add_node("01_reference_context", self._reference_context_node)
        graph.add_node("02_intent_classifier", self._intent_classifier_node)
        graph.add_node("03_tiered_retrieval", self._tiered_retrieval_node)
        graph.add_node("04_ranking", self._ranking_node)
        graph.add_node("05_response_composer", self._response_composer_node)

        graph.set_entry_point("01_reference_context")
        graph.add_edge("01_reference_context", "02_intent_classifier")
        graph.add_edge("02_intent_classifier", "03_tiered_retrieval")
        graph.add_conditional_edges(
            "03_tiered_retrieval",
            self._decide_ranking,
            {
                "rank": "04_ranking",
                "compose": "05_response_composer",
            },
        )
        graph.add_edge("04_ranking", "05_response_composer")
        graph.add_edge("05_response_composer", END)

        return graph.compile()

    def _decide_ranking(self, state: PipelineState) -> Literal["rank", "compose"]:
        # empty candidate list never pays for a ranking call
        return "rank" if state.candidates else "compose"

    async def _graph_call(self, coro, what: str):
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.graph_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GraphExecutorError(f"Graph {what} timed out") from e
        except GraphExecutorError:
            raise
        except Exception as e:
            raise GraphExecutorError(f"Graph {what} failed: {e}") from e

    async def _reference_context_node(self, state: PipelineState) -> Dict[str, Any]:
        """01_reference_context: resolve the reference product and its catalog statistics."""
        start_time = time.time()
        product_id = state.request.reference_product_id
        if product_id is None:
            return {"node_timings": {**state.node_timings, "01_reference_context": 0.0}}

        reference = await self._graph_call(self.executor.get_product(product_id), "product lookup")
        graph_context = None
        if reference is None:
            logger.warning("Reference product not found, continuing without it", product_id=product_id)
        else:
            graph_context = await self._graph_call(self.executor.graph_context(reference), "context")

        duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "01_reference_context completed",
            trace_id=state.trace_id,
            product_id=product_id,
            found=reference is not None,
            duration_ms=duration_ms,
        )
        return {
            "reference": reference,
            "graph_context": graph_context,
            "node_timings": {**state.node_timings, "01_reference_context": duration_ms},
        }

    async def _intent_classifier_node(self, state: PipelineState) -> Dict[str, Any]:
        """02_intent_classifier: one reasoning call, tracked against today's budget."""
        start_time = time.time()
        try:
            plan = await self.classifier.classify(
                state.request.query,
                reference=state.reference,
                graph_context=state.graph_context,
                history=state.request.messages,
            )
        except ClassificationError as e:
            if e.reached_service:
                await self._track_cost()
            logger.error("02_intent_classifier failed", trace_id=state.trace_id, error=str(e))
            raise

        await self._track_cost()
        duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "02_intent_classifier completed",
            trace_id=state.trace_id,
            query_type=plan.query_type.value if plan.query_type else None,
            duration_ms=duration_ms,
        )
        return {"plan": plan, "node_timings": {**state.node_timings, "02_intent_classifier": duration_ms}}

    async def _tiered_retrieval_node(self, state: PipelineState) -> Dict[str, Any]:
        """03_tiered_retrieval: execute the plan's tiers and shape the candidates."""
        start_time = time.time()
        outcome = await self.retrieval.retrieve(
            state.plan,
            reference=state.reference,
            shown_ids=state.request.shown_product_ids,
        )
        duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "03_tiered_retrieval completed",
            trace_id=state.trace_id,
            tier=outcome.tier,
            tiers_tried=outcome.tiers_tried,
            candidates=len(outcome.candidates),
            duration_ms=duration_ms,
        )
        return {
            "candidates": outcome.candidates,
            "retrieval_tier": outcome.tier,
            "matched_count": outcome.matched_count,
            "shown_excluded": outcome.shown_excluded,
            "node_timings": {**state.node_timings, "03_tiered_retrieval": duration_ms},
        }

    async def _ranking_node(self, state: PipelineState) -> Dict[str, Any]:
        """04_ranking: order and explain candidates; failures are left to the composer's policy."""
        start_time = time.time()
        ranking_failed = False
        recommendations = []
        try:
            recommendations = await self.ranker.rank(
                state.request.query,
                state.candidates,
                reference=state.reference,
                history=state.request.messages,
            )
        except RankingError as e:
            logger.warning("04_ranking failed", trace_id=state.trace_id, error=str(e))
            ranking_failed = True

        if not ranking_failed and not recommendations:
            logger.warning("04_ranking returned no usable products", trace_id=state.trace_id)
            ranking_failed = True

        duration_ms = round((time.time() - start_time) * 1000, 2)
        logger.info(
            "04_ranking completed",
            trace_id=state.trace_id,
            recommendations=len(recommendations),
            ranking_failed=ranking_failed,
            duration_ms=duration_ms,
        )
        return {
            "recommendations": recommendations,
            "ranking_failed": ranking_failed,
            "node_timings": {**state.node_timings, "04_ranking": duration_ms},
        }

    async def _response_composer_node(self, state: PipelineState) -> Dict[str, Any]:
        """05_response_composer: pick the outcome and the user-facing explanation."""
        plan = state.plan
        explanation = plan.response if plan else ""
        actions = list(plan.suggested_actions) if plan else []
        products = list(state.recommendations)

        if state.ranking_failed:
            if self.settings.ranking_failure_policy == "degrade":
                outcome = "unranked"
                products = [
                    RankedRecommendation.from_candidate(c, reason=None, rank=i)
                    for i, c in enumerate(state.candidates, start=1)
                ]
            else:
                outcome = "ranking_failed"
                products = []
                explanation = APOLOGY_MESSAGE
                actions = []
        elif products:
            outcome = "recommendations"
        elif state.matched_count > 0 and state.shown_excluded >= state.matched_count:
            outcome = "all_shown"
            explanation = ALL_SHOWN_MESSAGE
        else:
            outcome = "no_match"
            explanation = NO_MATCH_MESSAGE

        response = ChatbotResponse(
            products=products,
            explanation=explanation,
            suggested_actions=actions,
            outcome=outcome,
        )
        logger.info(
            "05_response_composer completed",
            trace_id=state.trace_id,
            outcome=outcome,
            products=len(products),
        )
        return {"response": response, "cacheable": outcome in CACHEABLE_OUTCOMES}

    async def _track_cost(self):
        governor = await self.get_governor()
        if governor is not None:
            await governor.track_query()

    def _uses_cache(self, request: ChatbotRequest) -> bool:
        # the cache key is the query text alone; personalized requests bypass it
        return (
            self.cache is not None
            and request.reference_product_id is None
            and not request.shown_product_ids
        )

    async def run_query(self, request: ChatbotRequest) -> PipelineResult:
        """Run a request through cache, budget check and the graph."""
        state = PipelineState(request=request)
        start_time = time.time()

        logger.info(
            "Starting chatbot query",
            trace_id=state.trace_id,
            query_preview=request.query[:50],
            reference_product_id=request.reference_product_id,
            shown_count=len(request.shown_product_ids),
        )

        lookup = None
        if self._uses_cache(request):
            await self._ensure_cache_connected()
            if self.cache and self.cache.is_active:
                lookup = await self.cache.get_cached_response(request.query)
                if lookup.hit:
                    logger.info(
                        "Returning cached response",
                        trace_id=state.trace_id,
                        cache_similarity=round(lookup.similarity, 4),
                        duration_ms=round((time.time() - start_time) * 1000, 2),
                    )
                    return PipelineResult(
                        response=ChatbotResponse.model_validate(lookup.response),
                        cache_hit=True,
                        cache_similarity=lookup.similarity,
                        trace_id=state.trace_id,
                    )

        governor = await self.get_governor()
        if governor is not None and await governor.is_over_budget():
            stats = await governor.get_stats()
            logger.warning(
                "Daily budget exceeded, rejecting query",
                trace_id=state.trace_id,
                current_cost=stats.current_cost,
                daily_limit=stats.daily_limit,
            )
            raise BudgetExceededError(
                details={"current_cost": stats.current_cost, "daily_limit": stats.daily_limit}
            )

        result = await self.graph.ainvoke(state)
        if isinstance(result, dict):
            state = state.model_copy(update=result)
        else:
            state = result

        if state.cacheable and lookup is not None and self.cache is not None:
            await self.cache.cache_response(
                request.query,
                state.response.to_wire(),
                embedding=lookup.embedding,
            )

        logger.info(
            "Chatbot query completed",
            trace_id=state.trace_id,
            outcome=state.response.outcome,
            products=len(state.response.products),
            node_timings=state.node_timings,
            duration_ms=round((time.time() - start_time) * 1000, 2),
        )
        return PipelineResult(response=state.response, cache_hit=False, trace_id=state.trace_id)


_orchestrator: Optional[ChatbotOrchestrator] = None


def get_orchestrator() -> ChatbotOrchestrator:
    """Get or create the global orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ChatbotOrchestrator()
    return _orchestrator
