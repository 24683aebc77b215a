"""Tiered graph retrieval and result shaping."""

from .engine import RetrievalEngine, RetrievalOutcome, apply_price_filter
from .tiers import TIER_TABLE, Tier

__all__ = ["RetrievalEngine", "RetrievalOutcome", "apply_price_filter", "TIER_TABLE", "Tier"]
