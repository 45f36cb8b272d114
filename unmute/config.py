"""
Unmute — Application Configuration

Loads all configuration from environment variables (and an optional .env file)
using Pydantic Settings.  A cached ``get_settings()`` helper is provided so that
FastAPI dependency-injection (and any other call-site) always receives the same
validated instance without re-parsing the environment on every request.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the Unmute backend."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------ #
    # Database
    # ------------------------------------------------------------------ #
    DATABASE_URL: str

    # ------------------------------------------------------------------ #
    # Redis – cross-process recompute locks
    # ------------------------------------------------------------------ #
    REDIS_URL: str

    # ------------------------------------------------------------------ #
    # Vector similarity (Pinecone)
    # ------------------------------------------------------------------ #
    PINECONE_API_KEY: str = ""
    PINECONE_INDEX_NAME: str = "unmute-users"
    PINECONE_NAMESPACE: str = "users"
    VECTOR_TOP_K: int = 20
    VECTOR_TIMEOUT_SECONDS: float = 10.0
    VECTOR_MAX_ATTEMPTS: int = 3

    # ------------------------------------------------------------------ #
    # Match scoring
    # ------------------------------------------------------------------ #
    CONTENT_WEIGHT: float = 0.7   # Jaccard topic overlap
    VECTOR_WEIGHT: float = 0.3    # embedding similarity
    MATCH_LIMIT: int = 10
    MATCH_MIN_SCORE: float = 0.1

    # ------------------------------------------------------------------ #
    # Recalculation queue
    # ------------------------------------------------------------------ #
    MATCH_WORKER_COUNT: int = 2
    MATCH_JOB_MAX_ATTEMPTS: int = 3
    MATCH_JOB_RETRY_WAIT_SECONDS: float = 1.0
    MATCH_LOCK_TIMEOUT_SECONDS: int = 120
    MATCH_STATUS_RETENTION: int = 1000  # finished job statuses kept in memory

    # ------------------------------------------------------------------ #
    # Security
    # ------------------------------------------------------------------ #
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24 * 30

    # ------------------------------------------------------------------ #
    # Runtime environment
    # ------------------------------------------------------------------ #
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # ------------------------------------------------------------------ #
    # CORS
    # ------------------------------------------------------------------ #
    ALLOWED_ORIGINS: str = "*"

    # ------------------------------------------------------------------ #
    # Derived helpers
    # ------------------------------------------------------------------ #
    @property
    def allowed_origins_list(self) -> list[str]:
        """Return ALLOWED_ORIGINS as a list split on commas."""
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def vector_enabled(self) -> bool:
        return bool(self.PINECONE_API_KEY)

    @field_validator("CONTENT_WEIGHT", "VECTOR_WEIGHT", "MATCH_MIN_SCORE")
    @classmethod
    def _must_be_between_0_and_1(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Value must be between 0 and 1, got {v}")
        return v

    @field_validator(
        "MATCH_LIMIT",
        "VECTOR_TOP_K",
        "VECTOR_MAX_ATTEMPTS",
        "MATCH_WORKER_COUNT",
        "MATCH_JOB_MAX_ATTEMPTS",
        "MATCH_STATUS_RETENTION",
    )
    @classmethod
    def _must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Value must be at least 1, got {v}")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached, validated ``Settings`` instance.

    Using ``@lru_cache`` guarantees the .env file is read and validated
    exactly once per process lifetime::

        from unmute.config import get_settings
        settings = get_settings()
    """
    return Settings()  # type: ignore[call-arg]
