"""Application settings for the coffee recommendation chatbot."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Process-wide configuration, read from ``BEANS_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BEANS_",
        env_file=None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Core application settings
    app_env: Literal["development", "staging", "production", "test"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # CORS - use string to avoid JSON parsing issues
    cors_origins_str: str = Field(default="http://localhost:3000,https://localhost:3000", alias="cors_origins")

    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from string."""
        if not self.cors_origins_str.strip():
            return ["http://localhost:3000", "https://localhost:3000"]
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # Shared state (semantic cache entries + daily cost counter)
    redis_url: str = "redis://localhost:6379/0"

    # Retrieval
    max_candidates: int = Field(default=15, ge=1)
    graph_fetch_limit: int = Field(default=100, ge=1)
    graph_timeout_seconds: float = Field(default=10.0, gt=0)
    catalog_path: Optional[str] = None

    # Semantic cache
    cache_enabled: bool = True
    cache_similarity_threshold: float = 0.92
    cache_ttl_seconds: int = Field(default=3600, ge=1)

    # Cost governor
    daily_cost_limit: float = Field(default=10.00, gt=0)
    cost_per_query: float = Field(default=0.0005, gt=0)
    cost_alert_ratio: float = Field(default=0.9, gt=0, le=1)

    # Ranking
    ranking_failure_policy: Literal["degrade", "apologize"] = "degrade"

    # Reasoning service (OpenAI-compatible chat completions, Grok by default)
    llm_api_key: Optional[str] = None
    llm_base_url: str = "https://api.x.ai/v1"
    llm_model: str = "grok-beta"
    llm_temperature: float = 0.3
    llm_max_tokens: int = 1500
    llm_timeout_seconds: float = Field(default=30.0, gt=0)

    # Embedding service
    embedding_api_key: Optional[str] = None
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_model: str = "text-embedding-3-small"
    embedding_timeout_seconds: float = Field(default=10.0, gt=0)

    # Request guards
    query_max_length: int = Field(default=500, ge=1)
    rate_limit_enabled: bool = True
    rate_limit_per_minute: int = Field(default=10, ge=1)
    rate_limit_per_day: int = Field(default=200, ge=1)

    @field_validator("cache_similarity_threshold")
    @classmethod
    def validate_similarity_threshold(cls, v: float) -> float:
        """Cosine similarity thresholds only make sense inside [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError("Similarity threshold must be between 0 and 1")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def is_test(self) -> bool:
        """Check if running under the test suite."""
        return self.app_env == "test"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
