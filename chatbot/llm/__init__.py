"""Clients for the external reasoning and embedding services."""

from .embedding_client import EmbeddingClient
from .reasoning_client import ReasoningClient

__all__ = ["EmbeddingClient", "ReasoningClient"]
