"""
Tiered Retrieval Engine.

Turns a RetrievalPlan into a shaped candidate list:
1. Run the plan's tiers in order until one returns candidates
2. Deduplicate by product id (first occurrence wins)
3. Price-range filter
4. Drop the reference product (not for by-name searches)
5. Drop products already shown (not for by-name searches)
6. Cap at max_candidates
"""

import time
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

import structlog

from chatbot.graph.executor import GraphQueryExecutor
from chatbot.models import CandidateProduct, QueryType, RetrievalPlan
from chatbot.retrieval.tiers import TIER_TABLE, RetrievalContext

logger = structlog.get_logger(__name__)


@dataclass
class RetrievalOutcome:
    """Shaped candidates plus enough bookkeeping to explain an empty result."""

    candidates: List[CandidateProduct] = field(default_factory=list)
    tier: Optional[str] = None
    tiers_tried: List[str] = field(default_factory=list)
    matched_count: int = 0
    shown_excluded: int = 0

    @property
    def all_shown(self) -> bool:
        """Something matched, but every match had already been shown."""
        return not self.candidates and self.matched_count > 0 and self.shown_excluded >= self.matched_count


def dedupe(products: Iterable[CandidateProduct]) -> List[CandidateProduct]:
    seen = set()
    unique = []
    for p in products:
        if p.id in seen:
            continue
        seen.add(p.id)
        unique.append(p)
    return unique


def apply_price_filter(
    products: Iterable[CandidateProduct],
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> List[CandidateProduct]:
    """Keep products priced within [min_price, max_price]. Unpriced products fail any bound."""
    products = list(products)
    if min_price is None and max_price is None:
        return products
    return [
        p
        for p in products
        if p.price is not None
        and (max_price is None or p.price <= max_price)
        and (min_price is None or p.price >= min_price)
    ]


class RetrievalEngine:
    """Executes the tier table against a GraphQueryExecutor."""

    def __init__(
        self,
        executor: GraphQueryExecutor,
        max_candidates: int = 15,
        fetch_limit: int = 100,
        timeout_seconds: float = 10.0,
    ):
        self.executor = executor
        self.max_candidates = max_candidates
        self.fetch_limit = fetch_limit
        self.timeout_seconds = timeout_seconds

    async def retrieve(
        self,
        plan: RetrievalPlan,
        reference: Optional[CandidateProduct] = None,
        shown_ids: Iterable[int] = (),
    ) -> RetrievalOutcome:
        outcome = RetrievalOutcome()
        if plan.query_type is None:
            logger.warning("No query type in plan, returning no candidates")
            return outcome

        ctx = RetrievalContext(
            plan=plan,
            reference=reference,
            executor=self.executor,
            max_candidates=self.max_candidates,
            fetch_limit=self.fetch_limit,
            timeout_seconds=self.timeout_seconds,
        )

        raw: List[CandidateProduct] = []
        for tier in TIER_TABLE[plan.query_type]:
            start_time = time.time()
            results = await tier.run(ctx)
            outcome.tiers_tried.append(tier.name)
            logger.info(
                "Retrieval tier completed",
                query_type=plan.query_type.value,
                tier=tier.name,
                count=len(results),
                duration_ms=round((time.time() - start_time) * 1000, 2),
            )
            if results:
                raw = results
                outcome.tier = tier.name
                break

        filters = plan.filters
        shaped = apply_price_filter(dedupe(raw), filters.min_price, filters.max_price)

        explicit_lookup = plan.query_type == QueryType.SEARCH_BY_NAME
        if reference is not None and not explicit_lookup:
            shaped = [p for p in shaped if p.id != reference.id]

        outcome.matched_count = len(shaped)

        shown = set(shown_ids)
        if shown and not explicit_lookup:
            shaped = [p for p in shaped if p.id not in shown]
        outcome.shown_excluded = outcome.matched_count - len(shaped)

        outcome.candidates = shaped[: self.max_candidates]

        logger.info(
            "Retrieval completed",
            query_type=plan.query_type.value,
            tier=outcome.tier,
            raw_count=len(raw),
            matched_count=outcome.matched_count,
            shown_excluded=outcome.shown_excluded,
            final_count=len(outcome.candidates),
        )
        return outcome
