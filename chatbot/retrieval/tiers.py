"""
Tier table: ordered retrieval strategies per query type.

Each QueryType maps to a tuple of Tier(name, run) entries. The engine runs
them in order and stops at the first tier that returns anything. A tier
whose required inputs are missing returns [] rather than raising, so a plan
with absent filters simply produces no candidates.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, NamedTuple, Optional, Tuple

import structlog

from chatbot.errors import GraphExecutorError
from chatbot.graph.executor import Direction, GraphQuery, GraphQueryExecutor, GraphQueryParams
from chatbot.models import (
    CandidateProduct,
    QueryFilters,
    QueryType,
    RetrievalPlan,
    axis_index,
    category_index,
)

logger = structlog.get_logger(__name__)


@dataclass
class RetrievalContext:
    """Everything a tier needs to issue graph queries for one request."""

    plan: RetrievalPlan
    reference: Optional[CandidateProduct]
    executor: GraphQueryExecutor
    max_candidates: int = 15
    fetch_limit: int = 100
    timeout_seconds: float = 10.0
    _anchor_resolved: bool = field(default=False, init=False, repr=False)
    _anchor_id: Optional[int] = field(default=None, init=False, repr=False)

    @property
    def filters(self) -> QueryFilters:
        return self.plan.filters

    @property
    def reference_id(self) -> Optional[int]:
        return self.reference.id if self.reference is not None else None

    @property
    def direction(self) -> Direction:
        if self.plan.query_type in (QueryType.LESS_CATEGORY, QueryType.LESS_CHARACTER):
            return Direction.LESS
        return Direction.MORE

    async def run(self, query: GraphQuery, limit: int, **params) -> List[CandidateProduct]:
        """Execute one graph query under the configured timeout."""
        try:
            return await asyncio.wait_for(
                self.executor.execute(query, GraphQueryParams(**params), limit),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error("Graph query timed out", query=query.value, timeout_seconds=self.timeout_seconds)
            raise GraphExecutorError(f"Graph query {query.value} timed out") from e
        except GraphExecutorError:
            raise
        except Exception as e:
            logger.error("Graph query failed", query=query.value, error=str(e), error_type=type(e).__name__)
            raise GraphExecutorError(f"Graph query {query.value} failed: {e}") from e

    async def resolve_anchor(self) -> Optional[int]:
        """Reference product id, or the first by-name match when the plan names a product."""
        if self._anchor_resolved:
            return self._anchor_id

        self._anchor_resolved = True
        self._anchor_id = self.reference_id
        if self._anchor_id is None and self.filters.product_name:
            matches = await self.run(GraphQuery.BY_NAME, 1, name_substring=self.filters.product_name)
            if matches:
                self._anchor_id = matches[0].id
                logger.info(
                    "Inferred anchor product from name",
                    product_name=self.filters.product_name,
                    anchor_id=self._anchor_id,
                )
        return self._anchor_id


TierFn = Callable[[RetrievalContext], Awaitable[List[CandidateProduct]]]


class Tier(NamedTuple):
    name: str
    run: TierFn


# ==============================================================================
# DIRECT LOOKUPS
# ==============================================================================


async def by_name(ctx: RetrievalContext) -> List[CandidateProduct]:
    if not ctx.filters.product_name:
        return []
    return await ctx.run(GraphQuery.BY_NAME, ctx.fetch_limit, name_substring=ctx.filters.product_name)


async def by_brand(ctx: RetrievalContext) -> List[CandidateProduct]:
    if not ctx.filters.brand_name:
        return []
    return await ctx.run(GraphQuery.BY_BRAND, ctx.fetch_limit, brand_name=ctx.filters.brand_name)


async def by_origin(ctx: RetrievalContext) -> List[CandidateProduct]:
    origin = ctx.filters.origin
    if not origin and ctx.reference is not None and ctx.reference.origins:
        origin = ctx.reference.origins[0].country
    if not origin:
        return []
    return await ctx.run(GraphQuery.BY_ORIGIN, ctx.fetch_limit, origin=origin)


async def by_roast(ctx: RetrievalContext) -> List[CandidateProduct]:
    if not ctx.filters.roast_level:
        return []
    return await ctx.run(GraphQuery.BY_ROAST, ctx.fetch_limit, roast_level=ctx.filters.roast_level)


async def by_process(ctx: RetrievalContext) -> List[CandidateProduct]:
    if not ctx.filters.process:
        return []
    return await ctx.run(GraphQuery.BY_PROCESS, ctx.fetch_limit, process=ctx.filters.process)


# ==============================================================================
# FLAVOR SIMILARITY
# ==============================================================================


def _overlap_tier(query: GraphQuery) -> TierFn:
    async def run(ctx: RetrievalContext) -> List[CandidateProduct]:
        anchor = await ctx.resolve_anchor()
        if anchor is None:
            return []
        return await ctx.run(query, ctx.max_candidates, reference_id=anchor)

    return run


async def profile_cosine(ctx: RetrievalContext) -> List[CandidateProduct]:
    if ctx.reference_id is None:
        return []
    return await ctx.run(GraphQuery.SIMILAR_PROFILE, ctx.max_candidates, reference_id=ctx.reference_id)


async def profile_flavor_overlap(ctx: RetrievalContext) -> List[CandidateProduct]:
    if ctx.reference_id is None:
        return []
    return await ctx.run(GraphQuery.FLAVOR_OVERLAP, ctx.max_candidates, reference_id=ctx.reference_id)


# ==============================================================================
# MORE / LESS OF A FLAVOR CATEGORY
# ==============================================================================


async def category_profile(ctx: RetrievalContext) -> List[CandidateProduct]:
    idx = category_index(ctx.filters.flavor_category)
    if ctx.reference_id is None or idx is None:
        return []
    return await ctx.run(
        GraphQuery.CATEGORY_PROFILE,
        ctx.max_candidates,
        reference_id=ctx.reference_id,
        category_index=idx,
        direction=ctx.direction,
    )


async def category_flavor_overlap(ctx: RetrievalContext) -> List[CandidateProduct]:
    if ctx.reference_id is None or not ctx.filters.flavor_category:
        return []
    return await ctx.run(
        GraphQuery.CATEGORY_FLAVOR_OVERLAP,
        ctx.max_candidates,
        reference_id=ctx.reference_id,
        flavor_category=ctx.filters.flavor_category.lower(),
        direction=ctx.direction,
    )


async def category_membership(ctx: RetrievalContext) -> List[CandidateProduct]:
    """Plain membership; relative to the reference product when there is one."""
    if not ctx.filters.flavor_category:
        return []
    return await ctx.run(
        GraphQuery.BY_CATEGORY,
        ctx.max_candidates,
        reference_id=ctx.reference_id,
        flavor_category=ctx.filters.flavor_category.lower(),
        direction=ctx.direction,
    )


# ==============================================================================
# MORE / LESS OF A CHARACTER AXIS
# ==============================================================================

Lookup = Tuple[GraphQuery, str]

# (direction, axis, has_reference) -> alternatives tried in order; the lookups
# inside one alternative are unioned.
CHARACTER_FALLBACKS: Dict[Tuple[Direction, str, bool], Tuple[Tuple[Lookup, ...], ...]] = {
    (Direction.MORE, "acidity", True): (
        ((GraphQuery.BY_CATEGORY, "sour"),),
        ((GraphQuery.BY_ORIGIN, "Ethiopia"), (GraphQuery.BY_ORIGIN, "Kenya")),
    ),
    (Direction.MORE, "body", True): (
        ((GraphQuery.BY_PROCESS, "Natural"),),
        ((GraphQuery.BY_ORIGIN, "Brazil"), (GraphQuery.BY_ORIGIN, "Indonesia")),
    ),
    (Direction.MORE, "roast", True): (
        ((GraphQuery.BY_ROAST, "Dark"),),
        ((GraphQuery.BY_CATEGORY, "roasted"),),
    ),
    (Direction.MORE, "complexity", True): (
        ((GraphQuery.BY_PROCESS, "Natural"),),
        ((GraphQuery.BY_CATEGORY, "other"),),
    ),
    (Direction.LESS, "acidity", True): (
        ((GraphQuery.BY_ORIGIN, "Brazil"), (GraphQuery.BY_ORIGIN, "Indonesia")),
        ((GraphQuery.BY_PROCESS, "Washed"),),
    ),
    (Direction.LESS, "body", True): (
        ((GraphQuery.BY_ROAST, "Light"),),
        ((GraphQuery.BY_PROCESS, "Washed"),),
    ),
    (Direction.LESS, "roast", True): (((GraphQuery.BY_ROAST, "Light"),),),
    (Direction.LESS, "complexity", True): (((GraphQuery.BY_PROCESS, "Washed"),),),
    (Direction.MORE, "acidity", False): (
        ((GraphQuery.BY_ORIGIN, "Ethiopia"), (GraphQuery.BY_ORIGIN, "Kenya")),
    ),
    (Direction.MORE, "body", False): (((GraphQuery.BY_PROCESS, "Natural"),),),
    (Direction.MORE, "roast", False): (((GraphQuery.BY_ROAST, "Dark"),),),
    (Direction.MORE, "complexity", False): (((GraphQuery.BY_PROCESS, "Natural"),),),
    (Direction.LESS, "acidity", False): (((GraphQuery.BY_ORIGIN, "Brazil"),),),
    (Direction.LESS, "body", False): (((GraphQuery.BY_ROAST, "Light"),),),
    (Direction.LESS, "roast", False): (((GraphQuery.BY_ROAST, "Light"),),),
    (Direction.LESS, "complexity", False): (((GraphQuery.BY_PROCESS, "Washed"),),),
}

_LOOKUP_PARAM = {
    GraphQuery.BY_CATEGORY: "flavor_category",
    GraphQuery.BY_ORIGIN: "origin",
    GraphQuery.BY_PROCESS: "process",
    GraphQuery.BY_ROAST: "roast_level",
}


async def character_flavor_overlap(ctx: RetrievalContext) -> List[CandidateProduct]:
    idx = axis_index(ctx.filters.character_axis)
    if ctx.reference_id is None or idx is None:
        return []
    return await ctx.run(
        GraphQuery.CHARACTER_FLAVOR_OVERLAP,
        ctx.max_candidates,
        reference_id=ctx.reference_id,
        character_axis_index=idx,
        direction=ctx.direction,
    )


async def character_axis_vector(ctx: RetrievalContext) -> List[CandidateProduct]:
    idx = axis_index(ctx.filters.character_axis)
    if ctx.reference_id is None or idx is None:
        return []
    return await ctx.run(
        GraphQuery.CHARACTER_AXIS,
        ctx.max_candidates,
        reference_id=ctx.reference_id,
        character_axis_index=idx,
        direction=ctx.direction,
    )


async def character_heuristic(ctx: RetrievalContext) -> List[CandidateProduct]:
    """Map the axis to related origins, processes, roasts or categories."""
    axis = (ctx.filters.character_axis or "").strip().lower()
    alternatives = CHARACTER_FALLBACKS.get((ctx.direction, axis, ctx.reference is not None), ())

    for alternative in alternatives:
        results: List[CandidateProduct] = []
        for query, value in alternative:
            results.extend(await ctx.run(query, ctx.fetch_limit, **{_LOOKUP_PARAM[query]: value}))
        if results:
            logger.info(
                "Character heuristic matched",
                axis=axis,
                direction=ctx.direction.value,
                lookups=[f"{q.value}={v}" for q, v in alternative],
                count=len(results),
            )
            return results[: ctx.max_candidates]
    return []


# ==============================================================================
# COMPOSITE
# ==============================================================================


def _intersect(base: List[CandidateProduct], other: List[CandidateProduct]) -> List[CandidateProduct]:
    keep = {p.id for p in other}
    return [p for p in base if p.id in keep]


async def same_origin_more_category(ctx: RetrievalContext) -> List[CandidateProduct]:
    category = (ctx.filters.flavor_category or "").lower()
    if not category:
        return []
    if ctx.reference_id is not None:
        return await ctx.run(
            GraphQuery.SAME_ORIGIN_CATEGORY,
            ctx.max_candidates,
            reference_id=ctx.reference_id,
            flavor_category=category,
        )
    if not ctx.filters.origin:
        return []
    by_category = await ctx.run(GraphQuery.BY_CATEGORY, ctx.fetch_limit, flavor_category=category)
    by_origin = await ctx.run(GraphQuery.BY_ORIGIN, ctx.fetch_limit, origin=ctx.filters.origin)
    return _intersect(by_category, by_origin)[: ctx.max_candidates]


async def same_origin_different_roast(ctx: RetrievalContext) -> List[CandidateProduct]:
    roast = ctx.filters.roast_level
    if not roast:
        return []
    if ctx.reference_id is not None:
        return await ctx.run(
            GraphQuery.SAME_ORIGIN_ROAST,
            ctx.max_candidates,
            reference_id=ctx.reference_id,
            roast_level=roast,
        )
    if not ctx.filters.origin:
        return []
    by_origin = await ctx.run(GraphQuery.BY_ORIGIN, ctx.fetch_limit, origin=ctx.filters.origin)
    by_roast = await ctx.run(GraphQuery.BY_ROAST, ctx.fetch_limit, roast_level=roast)
    return _intersect(by_origin, by_roast)[: ctx.max_candidates]


async def custom_intersection(ctx: RetrievalContext) -> List[CandidateProduct]:
    """Successive intersection of the origin, process and roast candidate sets."""
    lookups = [
        (GraphQuery.BY_ORIGIN, "origin", ctx.filters.origin),
        (GraphQuery.BY_PROCESS, "process", ctx.filters.process),
        (GraphQuery.BY_ROAST, "roast_level", ctx.filters.roast_level),
    ]
    results: Optional[List[CandidateProduct]] = None
    for query, param, value in lookups:
        if not value:
            continue
        found = await ctx.run(query, ctx.fetch_limit, **{param: value})
        results = found if results is None else _intersect(results, found)
        if not results:
            return []
    return (results or [])[: ctx.max_candidates]


# ==============================================================================
# TABLE
# ==============================================================================

_CATEGORY_TIERS = (
    Tier("category_profile_vector", category_profile),
    Tier("category_flavor_overlap", category_flavor_overlap),
    Tier("category_membership", category_membership),
)

_CHARACTER_TIERS = (
    Tier("character_flavor_overlap", character_flavor_overlap),
    Tier("character_axis_vector", character_axis_vector),
    Tier("character_heuristic", character_heuristic),
)

TIER_TABLE: Dict[QueryType, Tuple[Tier, ...]] = {
    QueryType.SEARCH_BY_NAME: (Tier("by_name", by_name),),
    QueryType.SEARCH_BY_BRAND: (Tier("by_brand", by_brand),),
    QueryType.SIMILAR_FLAVORS: (
        Tier("tasting_note_overlap", _overlap_tier(GraphQuery.FLAVOR_OVERLAP)),
        Tier("attribute_overlap", _overlap_tier(GraphQuery.ATTRIBUTE_OVERLAP)),
        Tier("subcategory_overlap", _overlap_tier(GraphQuery.SUBCATEGORY_OVERLAP)),
    ),
    QueryType.SAME_ORIGIN: (Tier("by_origin", by_origin),),
    QueryType.SAME_ROAST: (Tier("by_roast", by_roast),),
    QueryType.SAME_PROCESS: (Tier("by_process", by_process),),
    QueryType.MORE_CATEGORY: _CATEGORY_TIERS,
    QueryType.LESS_CATEGORY: _CATEGORY_TIERS,
    QueryType.MORE_CHARACTER: _CHARACTER_TIERS,
    QueryType.LESS_CHARACTER: _CHARACTER_TIERS,
    QueryType.SIMILAR_PROFILE: (
        Tier("profile_cosine", profile_cosine),
        Tier("tasting_note_overlap", profile_flavor_overlap),
    ),
    QueryType.SAME_ORIGIN_MORE_CATEGORY: (Tier("same_origin_more_category", same_origin_more_category),),
    QueryType.SAME_ORIGIN_DIFFERENT_ROAST: (Tier("same_origin_different_roast", same_origin_different_roast),),
    QueryType.CUSTOM: (Tier("custom_intersection", custom_intersection),),
}
