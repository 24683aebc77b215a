"""Catalog graph access: executor interface and the in-memory implementation."""

from .executor import Direction, GraphQuery, GraphQueryExecutor, GraphQueryParams

__all__ = ["Direction", "GraphQuery", "GraphQueryExecutor", "GraphQueryParams"]
