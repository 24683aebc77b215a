"""
In-memory Graph Query Executor over a JSON product catalog.

Answers every GraphQuery by scanning a list of CandidateProduct records.
Relationship traversals (shared tasting notes, shared origins) become set
intersections; vector queries use each product's flavor_profile and
character_axes arrays and skip products that have none.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import structlog

from chatbot.graph.executor import Direction, GraphQuery, GraphQueryParams
from chatbot.models import CandidateProduct, GraphContext
from libs.caching.semantic_cache import cosine_similarity

logger = structlog.get_logger(__name__)


class CatalogLoadError(RuntimeError):
    """Raised when the catalog file cannot be read or parsed."""


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _note_names(product: CandidateProduct) -> Set[str]:
    return {_norm(n.name) for n in product.tasting_notes if n.name}


def _note_attributes(product: CandidateProduct) -> Set[str]:
    return {_norm(n.attribute) for n in product.tasting_notes if n.attribute}


def _note_subcategories(product: CandidateProduct) -> Set[str]:
    return {_norm(n.subcategory) for n in product.tasting_notes if n.subcategory}


def _countries(product: CandidateProduct) -> Set[str]:
    return {_norm(o.country) for o in product.origins}


def _category_count(product: CandidateProduct, category: Optional[str]) -> int:
    wanted = _norm(category)
    return sum(1 for n in product.tasting_notes if _norm(n.category) == wanted)


def _beyond(value: float, ref_value: float, direction: Direction) -> bool:
    return value > ref_value if direction == Direction.MORE else value < ref_value


def _component(vector: Optional[Sequence[float]], idx: Optional[int]) -> Optional[float]:
    """Vector entry at idx; None when the vector is missing or too short."""
    if not vector or idx is None or idx >= len(vector):
        return None
    return vector[idx]


class InMemoryGraphExecutor:
    """GraphQueryExecutor backed by a list of products held in memory."""

    def __init__(self, products: Iterable[CandidateProduct]):
        self._products: List[CandidateProduct] = list(products)
        self._by_id: Dict[int, CandidateProduct] = {p.id: p for p in self._products}
        self._handlers: Dict[GraphQuery, Callable[[GraphQueryParams], List[CandidateProduct]]] = {
            GraphQuery.BY_NAME: self._by_name,
            GraphQuery.BY_BRAND: self._by_brand,
            GraphQuery.BY_ORIGIN: self._by_origin,
            GraphQuery.BY_ROAST: self._by_roast,
            GraphQuery.BY_PROCESS: self._by_process,
            GraphQuery.BY_CATEGORY: self._by_category,
            GraphQuery.FLAVOR_OVERLAP: lambda p: self._overlap(p, _note_names),
            GraphQuery.ATTRIBUTE_OVERLAP: lambda p: self._overlap(p, _note_attributes),
            GraphQuery.SUBCATEGORY_OVERLAP: lambda p: self._overlap(p, _note_subcategories),
            GraphQuery.CATEGORY_PROFILE: self._category_profile,
            GraphQuery.CATEGORY_FLAVOR_OVERLAP: self._category_flavor_overlap,
            GraphQuery.CHARACTER_FLAVOR_OVERLAP: self._character_flavor_overlap,
            GraphQuery.CHARACTER_AXIS: self._character_axis,
            GraphQuery.SIMILAR_PROFILE: self._similar_profile,
            GraphQuery.SAME_ORIGIN_CATEGORY: self._same_origin_category,
            GraphQuery.SAME_ORIGIN_ROAST: self._same_origin_roast,
        }
        logger.info("In-memory catalog loaded", products=len(self._products))

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryGraphExecutor":
        """Load a catalog file holding either a list of products or ``{"products": [...]}``."""
        path = Path(path)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogLoadError(f"Failed to load catalog from {path}: {e}") from e

        rows = raw.get("products", []) if isinstance(raw, dict) else raw
        return cls(CandidateProduct.model_validate(row) for row in rows)

    def __len__(self) -> int:
        return len(self._products)

    # ------------------------------------------------------------------
    # GraphQueryExecutor
    # ------------------------------------------------------------------

    async def execute(self, query: GraphQuery, params: GraphQueryParams, limit: int) -> List[CandidateProduct]:
        handler = self._handlers.get(query)
        if handler is None:
            logger.warning("Unsupported graph query", query=str(query))
            return []
        results = handler(params)
        return results[:limit]

    async def get_product(self, product_id: int) -> Optional[CandidateProduct]:
        return self._by_id.get(product_id)

    async def graph_context(self, reference: CandidateProduct) -> GraphContext:
        others = [p for p in self._products if p.id != reference.id]
        ref_countries = _countries(reference)
        ref_processes = {_norm(x) for x in reference.processes}
        ref_notes = _note_names(reference)
        ref_roast = _norm(reference.roast_level)

        return GraphContext(
            same_origin_count=sum(1 for p in others if _countries(p) & ref_countries),
            same_roast_count=sum(1 for p in others if ref_roast and _norm(p.roast_level) == ref_roast),
            same_process_count=sum(1 for p in others if {_norm(x) for x in p.processes} & ref_processes),
            similar_flavor_count=sum(1 for p in others if _note_names(p) & ref_notes),
            available_origins=sorted({o.country for p in self._products for o in p.origins}),
            available_roast_levels=sorted({p.roast_level for p in self._products if p.roast_level}),
            available_processes=sorted({x for p in self._products for x in p.processes}),
        )

    # ------------------------------------------------------------------
    # Direct lookups
    # ------------------------------------------------------------------

    def _reference(self, params: GraphQueryParams) -> Optional[CandidateProduct]:
        if params.reference_id is None:
            return None
        return self._by_id.get(params.reference_id)

    def _others(self, reference: CandidateProduct) -> List[CandidateProduct]:
        return [p for p in self._products if p.id != reference.id]

    def _by_name(self, params: GraphQueryParams) -> List[CandidateProduct]:
        needle = _norm(params.name_substring)
        if not needle:
            return []
        return [p for p in self._products if needle in _norm(p.name)]

    def _by_brand(self, params: GraphQueryParams) -> List[CandidateProduct]:
        needle = _norm(params.brand_name)
        if not needle:
            return []
        return [p for p in self._products if needle in _norm(p.brand)]

    def _by_origin(self, params: GraphQueryParams) -> List[CandidateProduct]:
        wanted = _norm(params.origin)
        if not wanted:
            return []
        return [p for p in self._products if wanted in _countries(p)]

    def _by_roast(self, params: GraphQueryParams) -> List[CandidateProduct]:
        wanted = _norm(params.roast_level)
        if not wanted:
            return []
        return [p for p in self._products if _norm(p.roast_level) == wanted]

    def _by_process(self, params: GraphQueryParams) -> List[CandidateProduct]:
        wanted = _norm(params.process)
        if not wanted:
            return []
        return [p for p in self._products if wanted in {_norm(x) for x in p.processes}]

    def _by_category(self, params: GraphQueryParams) -> List[CandidateProduct]:
        """Category membership; relative to the reference product when one is given."""
        if not params.flavor_category:
            return []
        less = params.direction == Direction.LESS
        reference = self._reference(params)

        if reference is None:
            if less:
                return [p for p in self._products if _category_count(p, params.flavor_category) == 0]
            return [p for p in self._products if _category_count(p, params.flavor_category) > 0]

        ref_count = _category_count(reference, params.flavor_category)
        scored = [(p, _category_count(p, params.flavor_category)) for p in self._others(reference)]
        if less:
            scored = [(p, c) for p, c in scored if c < ref_count]
            scored.sort(key=lambda pc: pc[1])
        else:
            scored = [(p, c) for p, c in scored if c > 0]
            scored.sort(key=lambda pc: pc[1], reverse=True)
        return [p for p, _ in scored]

    # ------------------------------------------------------------------
    # Relationship overlap
    # ------------------------------------------------------------------

    def _overlap_scores(
        self, reference: CandidateProduct, key: Callable[[CandidateProduct], Set[str]]
    ) -> List[Tuple[CandidateProduct, int]]:
        ref_values = key(reference)
        if not ref_values:
            return []
        scored = [(p, len(key(p) & ref_values)) for p in self._others(reference)]
        scored = [(p, s) for p, s in scored if s > 0]
        scored.sort(key=lambda ps: ps[1], reverse=True)
        return scored

    def _overlap(self, params: GraphQueryParams, key: Callable[[CandidateProduct], Set[str]]) -> List[CandidateProduct]:
        reference = self._reference(params)
        if reference is None:
            return []
        return [p for p, _ in self._overlap_scores(reference, key)]

    def _category_flavor_overlap(self, params: GraphQueryParams) -> List[CandidateProduct]:
        reference = self._reference(params)
        if reference is None or not params.flavor_category:
            return []
        direction = params.direction or Direction.MORE
        ref_count = _category_count(reference, params.flavor_category)
        return [
            p
            for p, _ in self._overlap_scores(reference, _note_names)
            if _beyond(_category_count(p, params.flavor_category), ref_count, direction)
        ]

    def _same_origin_category(self, params: GraphQueryParams) -> List[CandidateProduct]:
        reference = self._reference(params)
        if reference is None or not params.flavor_category:
            return []
        ref_countries = _countries(reference)
        scored = [
            (p, _category_count(p, params.flavor_category))
            for p in self._others(reference)
            if _countries(p) & ref_countries
        ]
        scored = [(p, c) for p, c in scored if c > 0]
        scored.sort(key=lambda pc: pc[1], reverse=True)
        return [p for p, _ in scored]

    def _same_origin_roast(self, params: GraphQueryParams) -> List[CandidateProduct]:
        reference = self._reference(params)
        wanted = _norm(params.roast_level)
        if reference is None or not wanted:
            return []
        ref_countries = _countries(reference)
        return [
            p for p in self._others(reference) if _countries(p) & ref_countries and _norm(p.roast_level) == wanted
        ]

    # ------------------------------------------------------------------
    # Vector queries
    # ------------------------------------------------------------------

    def _category_profile(self, params: GraphQueryParams) -> List[CandidateProduct]:
        reference = self._reference(params)
        idx = params.category_index
        ref_value = _component(reference.flavor_profile, idx) if reference is not None else None
        if ref_value is None:
            return []
        return self._rank_by_component(
            reference, idx, ref_value, params.direction or Direction.MORE, "flavor_profile"
        )

    def _character_axis(self, params: GraphQueryParams) -> List[CandidateProduct]:
        reference = self._reference(params)
        idx = params.character_axis_index
        ref_value = _component(reference.character_axes, idx) if reference is not None else None
        if ref_value is None:
            return []
        return self._rank_by_component(
            reference, idx, ref_value, params.direction or Direction.MORE, "character_axes"
        )

    def _character_flavor_overlap(self, params: GraphQueryParams) -> List[CandidateProduct]:
        reference = self._reference(params)
        idx = params.character_axis_index
        ref_value = _component(reference.character_axes, idx) if reference is not None else None
        if ref_value is None:
            return []
        direction = params.direction or Direction.MORE
        matches = []
        for p, _ in self._overlap_scores(reference, _note_names):
            value = _component(p.character_axes, idx)
            if value is not None and _beyond(value, ref_value, direction):
                matches.append(p)
        return matches

    def _rank_by_component(
        self,
        reference: CandidateProduct,
        idx: int,
        ref_value: float,
        direction: Direction,
        attr: str,
    ) -> List[CandidateProduct]:
        scored = []
        for p in self._others(reference):
            value = _component(getattr(p, attr), idx)
            if value is not None and _beyond(value, ref_value, direction):
                scored.append((p, value))
        scored.sort(key=lambda pv: pv[1], reverse=direction == Direction.MORE)
        return [p for p, _ in scored]

    def _similar_profile(self, params: GraphQueryParams) -> List[CandidateProduct]:
        reference = self._reference(params)
        if reference is None or not reference.flavor_profile:
            return []
        scored = [
            (p, cosine_similarity(reference.flavor_profile, p.flavor_profile))
            for p in self._others(reference)
            if p.flavor_profile
        ]
        scored = [(p, s) for p, s in scored if s > 0]
        scored.sort(key=lambda ps: ps[1], reverse=True)
        return [p for p, _ in scored]

