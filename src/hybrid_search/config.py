"""Configuration management using Pydantic Settings."""

import json
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    search_host: str = Field(default="0.0.0.0", description="Server host")
    search_port: int = Field(default=5002, description="Server port")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Qdrant
    qdrant_url: str = Field(default="http://localhost:6333", description="Qdrant server URL")
    qdrant_api_key: str | None = Field(default=None, description="Qdrant API key (optional)")
    qdrant_collection: str = Field(default="documents", description="Qdrant collection name")
    qdrant_vector_name: str = Field(default="text_dense", description="Dense vector field name")
    qdrant_vector_size: int = Field(default=384, description="Dense vector dimensions")
    qdrant_timeout: int = Field(default=30, description="Qdrant request timeout in seconds")
    qdrant_grpc_port: int | None = Field(default=None, description="Qdrant gRPC port (optional)")
    qdrant_prefer_grpc: bool = Field(
        default=False, description="Prefer gRPC over HTTP for better performance"
    )
    namespace_field: str = Field(
        default="namespace", description="Payload field holding the document namespace"
    )

    # Embedder
    embedder_model: str = Field(
        default="BAAI/bge-small-en-v1.5", description="Dense text embedding model (384 dims)"
    )
    hf_api_token: str = Field(default="", description="Hugging Face API token")
    embedder_timeout: int = Field(default=30, description="Embedding request timeout in seconds")

    # Retry
    retry_max_retries: int = Field(default=3, description="Retries after the first attempt")
    retry_base_delay: float = Field(default=1.0, description="Base backoff delay in seconds")
    retry_max_delay: float = Field(default=30.0, description="Maximum backoff delay in seconds")
    retry_backoff_factor: float = Field(default=2.0, description="Exponential backoff factor")
    retry_timeout: float = Field(
        default=60.0, description="Overall time budget for one retried call in seconds"
    )

    # Circuit breaker
    circuit_max_failures: int = Field(
        default=5, description="Consecutive failures before the circuit opens"
    )
    circuit_reset_timeout: float = Field(
        default=60.0, description="Seconds the circuit stays open before a probe call"
    )

    # Connection pool
    pool_idle_timeout: float = Field(
        default=300.0, description="Seconds a pooled client may sit idle before reconnecting"
    )

    # Caches
    cache_ttl: float = Field(default=600.0, description="Result cache TTL in seconds")
    cache_max_size: int = Field(default=100, description="Result cache size ceiling")
    namespace_cache_ttl: float = Field(
        default=300.0, description="Namespace listing cache TTL in seconds"
    )

    # Search defaults
    search_default_k: int = Field(default=6, description="Default number of results")
    search_max_k: int = Field(default=50, description="Maximum number of results")
    search_score_threshold: float = Field(
        default=0.1, description="Default minimum hybrid score"
    )
    semantic_score_threshold: float = Field(
        default=0.5, description="Minimum vector store score for semantic hits"
    )
    semantic_over_fetch: float = Field(
        default=1.5, description="Over-fetch factor for vector store queries"
    )
    fuzzy_threshold: float = Field(
        default=0.4, description="Maximum fuzzy distance (lower is stricter)"
    )
    fuzzy_min_match_char_length: int = Field(
        default=3, description="Minimum contiguous characters for a fuzzy match"
    )

    # Multi-namespace orchestration
    namespace_fanout: int = Field(default=10, description="Top ranked namespaces to search")
    namespace_concurrency: int = Field(
        default=10, description="Maximum concurrent namespace searches"
    )
    namespace_k_divisor: int = Field(default=4, description="Per-namespace k = ceil(k / divisor)")
    namespace_threshold_factor: float = Field(
        default=0.3, description="Per-namespace threshold multiplier"
    )
    namespace_fallback_threshold_factor: float = Field(
        default=0.1, description="Fallback pass threshold multiplier"
    )
    namespace_aliases: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Term to multilingual variants used when matching namespace names",
    )

    # Ingestion
    upsert_batch_size: int = Field(default=15, description="Documents per upsert batch")
    upsert_concurrency: int = Field(default=4, description="Concurrent upsert batches")
    upsert_max_split_depth: int = Field(
        default=2, description="Times a failing batch may be halved and retried"
    )

    # Index health
    index_stale_after: float = Field(
        default=24 * 60 * 60, description="Seconds after which the index counts as stale"
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v: str | list[str]) -> list[str]:
        """Parse CORS origins from environment variable.

        Supports comma-separated strings or JSON arrays.
        """
        if isinstance(v, str):
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS origins must be a list")
                return parsed
            return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("namespace_threshold_factor", "namespace_fallback_threshold_factor")
    @classmethod
    def validate_factor(cls, v: float) -> float:
        """Threshold multipliers must lie in [0, 1]."""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Threshold factor must be between 0 and 1, got {v}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    """
    return Settings()
