"""Unified PlanMind configuration using Pydantic Settings v2.

Provides a typed, nested configuration model with environment variable
mapping. Prefer nested fields and `PLANMIND_{SECTION}__{FIELD}` env vars.

Usage:
    from planmind.config.settings import settings
    print(settings.retrieval.fusion_k)
"""

from pathlib import Path

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseModel):
    """Chat completion backend configuration (OpenAI-compatible surface)."""

    model: str = Field(default="gpt-4o-mini")
    base_url: str | None = Field(
        default=None, description="OpenAI-compatible endpoint; None uses the default"
    )
    api_key: SecretStr | None = Field(default=None)
    temperature: float = Field(default=0.1, ge=0, le=2)
    request_timeout_seconds: float = Field(default=30.0, ge=1, le=600)

    # Transient failure policy
    max_retries: int = Field(default=2, ge=0, le=10)
    initial_backoff_seconds: float = Field(default=0.5, ge=0, le=30)
    max_backoff_seconds: float = Field(default=8.0, ge=0, le=120)

    # Schema violations get this many corrective re-prompts before fallback
    corrective_reprompts: int = Field(default=1, ge=0, le=3)


class EmbeddingConfig(BaseModel):
    """Text embedding configuration."""

    model_name: str = Field(default="text-embedding-3-small")
    dimension: int = Field(default=1536, ge=64, le=4096)
    request_timeout_seconds: float = Field(default=15.0, ge=1, le=300)


class VectorStoreConfig(BaseModel):
    """Qdrant vector store configuration."""

    qdrant_url: str = Field(default="http://localhost:6333")
    qdrant_api_key: SecretStr | None = Field(default=None)
    collection: str = Field(default="health_plans")
    timeout_seconds: int = Field(default=10, ge=1, le=300)


class RetrievalConfig(BaseModel):
    """Multi-query retrieval, fusion, grading and rewrite configuration."""

    # Query generation
    min_queries: int = Field(default=3, ge=3, le=5)
    max_queries: int = Field(default=5, ge=3, le=5)

    # Per-query vector search
    top_k_per_query: int = Field(default=10, ge=1, le=100)

    # RRF Fusion Settings
    fusion_k: int = Field(default=60, ge=1, le=1000)
    fused_top_k: int = Field(default=15, ge=1, le=200)
    multi_query_boost: bool = Field(default=True)
    boost_factor: float = Field(default=0.1, gt=0, le=5)

    # Grading
    grading_batch_size: int = Field(default=5, ge=1, le=50)

    # Rewrite loop
    min_relevant_docs: int = Field(default=3, ge=1, le=50)
    max_rewrite_attempts: int = Field(default=2, ge=0, le=10)
    low_diversity_threshold: float = Field(default=0.3, ge=0, le=1)


class OrchestratorConfig(BaseModel):
    """Conversation orchestrator configuration."""

    max_loop_iterations: int = Field(default=10, ge=1, le=100)
    intent_confidence_threshold: float = Field(default=0.5, ge=0, le=1)
    eager_prerequisites: bool = Field(default=True)
    history_window: int = Field(
        default=5, ge=0, le=50, description="Recent messages passed to the classifier"
    )


class PlanMindSettings(BaseSettings):
    """Unified PlanMind configuration.

    Nested sections map to `PLANMIND_<SECTION>__<FIELD>` environment
    variables; a `.env` file in the working directory is honoured.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PLANMIND_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    log_file: Path | None = Field(default=None)

    llm: LLMConfig = Field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)


settings = PlanMindSettings()

__all__ = [
    "EmbeddingConfig",
    "LLMConfig",
    "OrchestratorConfig",
    "PlanMindSettings",
    "RetrievalConfig",
    "VectorStoreConfig",
    "settings",
]
