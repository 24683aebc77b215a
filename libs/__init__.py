"""Beans shared libraries.

This package contains reusable components:
- common: configuration
- caching: Redis client management and the semantic response cache
- cost: daily spend tracking for reasoning-service calls
"""
