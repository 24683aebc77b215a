"""
Daily spend ceiling for reasoning-service calls.

One Redis float counter per calendar day (``cost:daily:YYYY-MM-DD``) is
incremented with INCRBYFLOAT, so concurrent workers never lose an update.
The counter expires at the next local midnight. Every statistic is derived
from that single counter.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

KEY_PREFIX = "cost:daily:"


@dataclass(frozen=True)
class CostStats:
    """Snapshot of today's spend."""

    current_cost: float
    daily_limit: float
    cost_per_query: float
    query_count: int
    remaining_budget: float
    remaining_queries: int

    @property
    def is_over_budget(self) -> bool:
        return self.current_cost >= self.daily_limit


class CostGovernor:
    """
    Tracks today's estimated reasoning-service spend.

    Usage:
        governor = CostGovernor(redis_client, daily_limit=10.0, cost_per_query=0.0005)
        if await governor.is_over_budget():
            raise BudgetExceededError(...)
        ...
        await governor.track_query()
    """

    def __init__(
        self,
        redis_client,
        daily_limit: float = 10.0,
        cost_per_query: float = 0.0005,
        alert_ratio: float = 0.9,
        today: Callable[[], date] = date.today,
    ):
        self._redis = redis_client
        self.daily_limit = daily_limit
        self.cost_per_query = cost_per_query
        self.alert_ratio = alert_ratio
        self._today = today

    def _key(self) -> str:
        return f"{KEY_PREFIX}{self._today().isoformat()}"

    def _next_midnight(self) -> datetime:
        return datetime.combine(self._today() + timedelta(days=1), time.min)

    async def track_query(self) -> Optional[float]:
        """
        Add one query's cost to today's counter.

        Returns:
            The counter value after the increment, or None if Redis is unavailable
        """
        if self._redis is None:
            logger.error("Cost tracking skipped, Redis unavailable")
            return None

        key = self._key()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incrbyfloat(key, self.cost_per_query)
                pipe.ttl(key)
                new_total, ttl = await pipe.execute()

            # -1 means no expiry yet; EXPIREAT is idempotent so racing first writers agree
            if ttl is not None and int(ttl) < 0:
                await self._redis.expireat(key, self._next_midnight())
        except Exception as e:
            logger.error("Failed to track query cost", error=str(e))
            return None

        new_total = float(new_total)
        alert_threshold = self.daily_limit * self.alert_ratio
        if new_total - self.cost_per_query < alert_threshold <= new_total:
            logger.warning(
                "Daily cost approaching limit",
                current_cost=round(new_total, 4),
                daily_limit=self.daily_limit,
                alert_ratio=self.alert_ratio,
            )

        logger.debug("Query cost tracked", current_cost=round(new_total, 4), key=key)
        return new_total

    async def get_today_cost(self) -> float:
        if self._redis is None:
            return 0.0
        try:
            value = await self._redis.get(self._key())
        except Exception as e:
            logger.error("Failed to read daily cost", error=str(e))
            return 0.0
        return float(value) if value else 0.0

    async def is_over_budget(self) -> bool:
        """True once today's spend has reached the ceiling."""
        current = await self.get_today_cost()
        over = current >= self.daily_limit
        if over:
            logger.warning("Daily cost limit exceeded", current_cost=round(current, 4), daily_limit=self.daily_limit)
        return over

    async def get_stats(self) -> CostStats:
        current = await self.get_today_cost()
        remaining = max(0.0, self.daily_limit - current)
        # epsilon absorbs float drift from repeated INCRBYFLOAT
        query_count = int(math.floor(current / self.cost_per_query + 1e-6))
        remaining_queries = int(math.floor(remaining / self.cost_per_query + 1e-6))
        return CostStats(
            current_cost=current,
            daily_limit=self.daily_limit,
            cost_per_query=self.cost_per_query,
            query_count=query_count,
            remaining_budget=remaining,
            remaining_queries=remaining_queries,
        )

    async def reset_daily_cost(self) -> bool:
        """Delete today's counter. Intended for admin use only."""
        if self._redis is None:
            return False
        deleted = await self._redis.delete(self._key())
        logger.warning("Daily cost counter reset", key=self._key(), existed=bool(deleted))
        return True
