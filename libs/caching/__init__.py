"""
Caching utilities for the Beans chatbot.

- Redis client management (shared pool, fakeredis under test)
- Semantic caching of full responses by query-embedding similarity
"""

from libs.caching.redis_client import get_redis_client
from libs.caching.semantic_cache import SemanticCache

__all__ = ["get_redis_client", "SemanticCache"]
