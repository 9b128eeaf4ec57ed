"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
All configuration is loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Settings are validated using Pydantic and cached for performance.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    APP_NAME: str = "ReasonBank"
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_PREFIX: str = "/api/v1"

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "reasonbank"
    POSTGRES_PASSWORD: str = "reasonbank_dev_password"
    POSTGRES_DB: str = "reasonbank"

    # Optional full DSN overrides
    POSTGRES_URL: Optional[str] = None
    POSTGRES_URL_SYNC: Optional[str] = None

    # Test-only DB overrides (used by pytest fixtures)
    TEST_DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL_SYNC: Optional[str] = None

    # "postgres" for the pgvector-backed store, "memory" for a process-local one
    STORE_BACKEND: str = "postgres"

    @field_validator("STORE_BACKEND", mode="before")
    @classmethod
    def normalize_backend(cls, v):
        return str(v or "postgres").strip().lower()

    @property
    def DATABASE_URL(self) -> str:
        """Build the async database URL."""
        if self.APP_ENV == "test" and self.TEST_DATABASE_URL:
            return self.TEST_DATABASE_URL
        if self.POSTGRES_URL:
            return self.POSTGRES_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def DATABASE_URL_SYNC(self) -> str:
        """Build the sync database URL (for Alembic)."""
        if self.APP_ENV == "test" and self.TEST_DATABASE_URL_SYNC:
            return self.TEST_DATABASE_URL_SYNC
        if self.POSTGRES_URL_SYNC:
            return self.POSTGRES_URL_SYNC
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # -------------------------------------------------------------------------
    # Embeddings
    # -------------------------------------------------------------------------
    # auto | openai | ollama | hashing
    EMBEDDING_PROVIDER: str = "auto"
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 384
    OPENAI_API_KEY: Optional[str] = None
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_EMBEDDING_MODEL: str = "all-minilm"
    OLLAMA_TIMEOUT_SECONDS: float = 5.0
    OLLAMA_MAX_CONCURRENCY: int = 2

    # Embedding guard: near-constant vectors and non-unit norms are rejected
    EMBEDDING_MIN_VARIANCE: float = 0.001
    EMBEDDING_NORM_MIN: float = 0.8
    EMBEDDING_NORM_MAX: float = 1.2

    # -------------------------------------------------------------------------
    # Store retry
    # -------------------------------------------------------------------------
    STORE_RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    STORE_RETRY_BASE_DELAY_SECONDS: float = Field(default=1.0, ge=0.0)
    STORE_RETRY_BACKOFF_FACTOR: float = Field(default=3.0, ge=1.0)
    STORE_RETRY_MAX_DELAY_SECONDS: float = Field(default=10.0, ge=0.0)

    # -------------------------------------------------------------------------
    # Learning
    # -------------------------------------------------------------------------
    FEEDBACK_BLEND_ALPHA: float = Field(default=0.3, gt=0.0, le=1.0)
    SEARCH_MIN_SIMILARITY: float = Field(default=0.3, ge=-1.0, le=1.0)

    # -------------------------------------------------------------------------
    # Spiking network
    # -------------------------------------------------------------------------
    SPIKE_THRESHOLD: float = Field(default=0.8, gt=0.0, le=1.0)
    SPIKE_MAX_DEPTH: int = Field(default=8, ge=1)
    SPIKE_DECAY_HALF_LIFE_SECONDS: float = Field(default=3600.0, gt=0.0)
    LINK_TRACE_WINDOW: int = Field(default=5, ge=2)
    ANOMALY_WINDOW_SECONDS: int = Field(default=3600, ge=1)
    ANOMALY_Z_THRESHOLD: float = Field(default=2.0, ge=0.0)

    # Spike-timing plasticity on links: effective weight = weight * plasticity
    STDP_WINDOW_SECONDS: float = Field(default=60.0, gt=0.0)
    STDP_TAU_SECONDS: float = Field(default=12.0, gt=0.0)
    STDP_POTENTIATION: float = Field(default=0.01, ge=0.0)
    STDP_DEPRESSION: float = Field(default=0.005, ge=0.0)
    PLASTICITY_MIN: float = Field(default=0.1, gt=0.0)
    PLASTICITY_MAX: float = Field(default=5.0, gt=0.0)

    # -------------------------------------------------------------------------
    # Pattern graph (min-cut clustering, novelty, PageRank)
    # -------------------------------------------------------------------------
    GRAPH_SIMILARITY_THRESHOLD: float = Field(default=0.3, ge=-1.0, le=1.0)
    GRAPH_MIN_CUT_THRESHOLD: float = Field(default=0.5, ge=0.0)
    GRAPH_MAX_CLUSTERS: int = Field(default=10, ge=1)
    NOVELTY_THRESHOLD: float = Field(default=0.4, ge=-1.0, le=1.0)
    PAGERANK_DAMPING: float = Field(default=0.85, gt=0.0, lt=1.0)

    # -------------------------------------------------------------------------
    # Celery
    # -------------------------------------------------------------------------
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    LEARNING_MAINTENANCE_DOMAINS: list[str] = Field(default_factory=list)

    @field_validator("LEARNING_MAINTENANCE_DOMAINS", mode="before")
    @classmethod
    def parse_domains(cls, v):
        """Parse maintenance domains from a comma separated string or list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [d.strip() for d in v.split(",") if d.strip()]
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
