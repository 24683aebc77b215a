"""Daily cost governance for reasoning-service calls."""

from libs.cost.governor import CostGovernor, CostStats

__all__ = ["CostGovernor", "CostStats"]
