"""
Embedding-similarity response cache for chatbot queries.

Provides:
- Approximate lookup: cosine similarity between the query embedding and
  every stored query embedding, best match at or above the threshold wins
- Append-only entries with a fixed TTL (near-duplicates coexist until expiry)
- Hit/miss counters kept in Redis so every worker reports the same numbers

Redis failures degrade to a cache miss; embedding failures propagate.
"""

import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import numpy as np
import structlog

logger = structlog.get_logger(__name__)

ENTRY_PREFIX = "semantic:cache:"
HITS_KEY = "semantic:stats:hits"
MISSES_KEY = "semantic:stats:misses"


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Compute cosine similarity between two vectors.

    Returns 0.0 when either vector has zero norm or the lengths differ.
    """
    a = np.asarray(vec1, dtype=float)
    b = np.asarray(vec2, dtype=float)
    if a.shape != b.shape:
        return 0.0
    norm_product = np.linalg.norm(a) * np.linalg.norm(b)
    if norm_product == 0:
        return 0.0
    return float(np.dot(a, b) / norm_product)


@dataclass
class CacheLookup:
    """Result of a cache lookup. The embedding is reused when storing after a miss."""

    hit: bool
    embedding: Optional[List[float]] = None
    response: Optional[Dict[str, Any]] = None
    similarity: float = 0.0
    original_query: Optional[str] = None


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    entries: int = 0
    similarity_threshold: float = 0.0
    ttl_seconds: int = 0
    enabled: bool = True

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Calculate overall cache hit rate."""
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests


class SemanticCache:
    """
    Semantic cache for chatbot responses.

    Usage:
        cache = SemanticCache(redis_url=settings.redis_url, embedding_client=embedder)
        await cache.connect()

        lookup = await cache.get_cached_response(query)
        if lookup.hit:
            return lookup.response

        result = await run_pipeline(query)
        await cache.cache_response(query, result, embedding=lookup.embedding)
    """

    def __init__(
        self,
        redis_url: str,
        embedding_client: Optional[Embedder] = None,
        similarity_threshold: float = 0.92,
        default_ttl: int = 3600,
        enabled: bool = True,
    ):
        """
        Initialize semantic cache.

        Args:
            redis_url: Redis connection URL
            embedding_client: Object exposing ``async embed(text) -> list[float]``
            similarity_threshold: Minimum cosine similarity for a hit (0-1)
            default_ttl: TTL in seconds for cached entries
            enabled: When False every lookup is a miss and nothing is stored
        """
        self.redis_url = redis_url
        self.similarity_threshold = similarity_threshold
        self.default_ttl = default_ttl
        self.enabled = enabled
        self._embedding_client = embedding_client
        self._redis_client = None

    async def connect(self, use_fake: Optional[bool] = None):
        """
        Connect to Redis.

        Args:
            use_fake: If True, use fakeredis for testing. If None, auto-detect.
        """
        if self._redis_client is not None:
            return

        if use_fake is None:
            from libs.common.settings import get_settings

            use_fake = get_settings().is_test

        if use_fake:
            from fakeredis import aioredis as fakeredis

            self._redis_client = fakeredis.FakeRedis(decode_responses=True)
            logger.info("SemanticCache using fakeredis for testing")
            return

        from libs.caching.redis_client import get_redis_client

        self._redis_client = await get_redis_client(use_fake=False)

        if self._redis_client is None:
            logger.error("Failed to connect to Redis, semantic cache disabled")
            return

        logger.info(
            "SemanticCache connected to Redis",
            similarity_threshold=self.similarity_threshold,
            default_ttl=self.default_ttl,
            enabled=self.enabled,
        )

    async def disconnect(self):
        """Drop the Redis reference. The shared client is owned by redis_client."""
        if self._redis_client is not None:
            self._redis_client = None
            logger.info("SemanticCache disconnected")

    @property
    def is_active(self) -> bool:
        return self.enabled and self._redis_client is not None and self._embedding_client is not None

    async def embed(self, query: str) -> List[float]:
        if self._embedding_client is None:
            raise RuntimeError("SemanticCache has no embedding client")
        return list(await self._embedding_client.embed(query))

    async def get_cached_response(self, query: str) -> CacheLookup:
        """
        Look up the stored response whose query is most similar to ``query``.

        Args:
            query: User query

        Returns:
            CacheLookup; ``hit`` is True when the best similarity meets the threshold
        """
        if not self.is_active:
            return CacheLookup(hit=False)

        embedding = await self.embed(query)

        try:
            best = await self._find_most_similar(embedding)
        except Exception as e:
            logger.error("Semantic cache scan failed, treating as miss", error=str(e))
            return CacheLookup(hit=False, embedding=embedding)

        if best is not None and best[0] >= self.similarity_threshold:
            similarity, entry = best
            await self._bump(HITS_KEY)
            logger.info(
                "Cache hit: semantic similarity",
                similarity=round(similarity, 4),
                query_preview=query[:50],
                original_query=entry.get("original_query", "")[:50],
            )
            return CacheLookup(
                hit=True,
                embedding=embedding,
                response=entry["response"],
                similarity=similarity,
                original_query=entry.get("original_query"),
            )

        await self._bump(MISSES_KEY)
        logger.info(
            "Cache miss",
            query_preview=query[:50],
            best_similarity=round(best[0], 4) if best else None,
        )
        return CacheLookup(hit=False, embedding=embedding)

    async def cache_response(
        self,
        query: str,
        response: Dict[str, Any],
        embedding: Optional[List[float]] = None,
        ttl_seconds: Optional[int] = None,
    ) -> Optional[str]:
        """
        Store a new entry for ``query``. Existing entries are never touched.

        Args:
            query: User query
            response: Serialized response to return on later hits
            embedding: Query embedding from the preceding lookup, computed if absent
            ttl_seconds: TTL in seconds (default: self.default_ttl)

        Returns:
            The new entry key, or None when nothing was stored
        """
        if not self.is_active:
            return None

        if ttl_seconds is None:
            ttl_seconds = self.default_ttl
        if embedding is None:
            embedding = await self.embed(query)

        key = f"{ENTRY_PREFIX}{uuid.uuid4().hex}"
        entry = {
            "original_query": query,
            "embedding": list(embedding),
            "response": response,
            "similarity": 1.0,
            "cached_at": datetime.now(timezone.utc).isoformat(),
        }

        try:
            await self._redis_client.setex(key, ttl_seconds, json.dumps(entry))
        except Exception as e:
            logger.error("Failed to cache response", error=str(e))
            return None

        logger.info("Response cached", cache_key=key, ttl_seconds=ttl_seconds, query_preview=query[:50])
        return key

    async def _find_most_similar(self, embedding: List[float]):
        best_similarity = -1.0
        best_entry = None

        async for key in self._redis_client.scan_iter(match=f"{ENTRY_PREFIX}*", count=100):
            raw = await self._redis_client.get(key)
            if not raw:
                # expired between scan and get
                continue
            try:
                entry = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt cache entry", cache_key=key)
                continue

            similarity = cosine_similarity(embedding, entry.get("embedding") or [])
            if similarity > best_similarity:
                best_similarity = similarity
                best_entry = entry

        if best_entry is None:
            return None
        return best_similarity, best_entry

    async def _bump(self, key: str):
        try:
            await self._redis_client.incr(key)
        except Exception as e:
            logger.warning("Failed to update cache counter", counter=key, error=str(e))

    async def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        stats = CacheStats(
            similarity_threshold=self.similarity_threshold,
            ttl_seconds=self.default_ttl,
            enabled=self.enabled,
        )
        if self._redis_client is None:
            return stats

        try:
            hits, misses = await self._redis_client.mget(HITS_KEY, MISSES_KEY)
            stats.hits = int(hits or 0)
            stats.misses = int(misses or 0)
            async for _ in self._redis_client.scan_iter(match=f"{ENTRY_PREFIX}*", count=100):
                stats.entries += 1
        except Exception as e:
            logger.error("Error reading cache stats", error=str(e))

        return stats

    async def clear_cache(self, pattern: str = f"{ENTRY_PREFIX}*") -> int:
        """
        Clear cache entries matching pattern.

        Args:
            pattern: Redis key pattern

        Returns:
            Number of keys deleted
        """
        if self._redis_client is None:
            return 0

        try:
            cursor = 0
            deleted = 0

            while True:
                cursor, keys = await self._redis_client.scan(cursor=cursor, match=pattern, count=100)

                if keys:
                    deleted += await self._redis_client.delete(*keys)

                if cursor == 0:
                    break

            logger.info("Cache cleared", pattern=pattern, deleted=deleted)
            return deleted

        except Exception as e:
            logger.error("Error clearing cache", error=str(e))
            return 0
