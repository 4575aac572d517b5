"""
Petlog RAG - Centralized Configuration
=======================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Two layers
----------
- ``Settings`` holds infrastructure wiring (LanceDB path, MongoDB URI,
  embedding provider) and the retrieval tunables as loaded from the
  environment.  A module-level ``settings`` instance is used by the
  logger, the CLI and the adapters.
- ``RetrievalConfig`` is the explicit, frozen configuration handed to the
  retrieval pipeline.  Stages never read ``settings`` directly; build one
  with ``RetrievalConfig.from_settings(settings)`` or construct it by hand
  in tests.

Security
--------
``MONGO_URI`` and ``GOOGLE_API_KEY`` are ``SecretStr``.  The raw values are
never exposed in repr, logs, or tracebacks.  AWS credentials are resolved
by the standard AWS credential chain and are not stored here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).

    Attributes
    ----------
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity.
    LOG_LEVEL : str | None
        Explicit log level; overrides the ``ENV``-derived default.
    EMBEDDING_PROVIDER : Literal["bedrock", "google"]
        Which LangChain embedding backend ``build_embedder`` returns.
    AWS_REGION : str
        Bedrock runtime region for Titan embeddings.
    BEDROCK_EMBEDDING_MODEL : str
        Titan embedding model id.
    GOOGLE_API_KEY : SecretStr | None
        Only required when ``EMBEDDING_PROVIDER == "google"`` or for
        persona chat replies (``LLM_MODEL``).
    EMBEDDING_DIMENSION : int
        Fixed vector dimensionality of the index.  Every stored and
        queried vector must have exactly this length.
    LANCEDB_TABLE_NAME : str
        Table name inside the LanceDB on-disk database.
    MONGO_URI : SecretStr
        MongoDB connection string for the memory record store.
    SEARCH_TOP_K .. RETRIEVAL_DEADLINE_SECONDS
        Retrieval tunables, copied into ``RetrievalConfig``.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None

    # ── Embeddings ─────────────────────────────────────────────────────
    EMBEDDING_PROVIDER: Literal["bedrock", "google"] = "bedrock"
    AWS_REGION: str = "ap-northeast-2"
    BEDROCK_EMBEDDING_MODEL: str = "amazon.titan-embed-text-v2:0"
    GOOGLE_API_KEY: SecretStr | None = None
    GOOGLE_EMBEDDING_MODEL: str = "models/gemini-embedding-001"
    EMBEDDING_DIMENSION: int = 1024

    # ── Chat model (persona replies) ───────────────────────────────────
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.7

    # ── LanceDB ────────────────────────────────────────────────────────
    LANCEDB_TABLE_NAME: str = "diary_vectors"

    # ── MongoDB (memory record store) ──────────────────────────────────
    MONGO_URI: SecretStr = SecretStr("mongodb://localhost:27017")
    MONGO_DB_NAME: str = "petlog"
    MONGO_COLLECTION: str = "memory_records"

    # ── Retrieval tunables ─────────────────────────────────────────────
    SEARCH_TOP_K: int = 3
    MIN_SCORE: float = 0.0
    OVERFETCH_MULTIPLIER: int = 2
    VECTOR_WEIGHT: float = 0.7
    KEYWORD_WEIGHT: float = 0.3
    CONTEXT_CHAR_BUDGET: int = 400

    # ── Timeouts (seconds) ─────────────────────────────────────────────
    EMBED_TIMEOUT_SECONDS: float = 15.0
    SEARCH_TIMEOUT_SECONDS: float = 15.0
    RETRIEVAL_DEADLINE_SECONDS: float = 30.0

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("EMBEDDING_DIMENSION")
    @classmethod
    def _dimension_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"EMBEDDING_DIMENSION must be ≥ 1, got {v}")
        return v


    @field_validator("SEARCH_TOP_K", "OVERFETCH_MULTIPLIER", "CONTEXT_CHAR_BUDGET")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v


    @field_validator("EMBED_TIMEOUT_SECONDS", "SEARCH_TIMEOUT_SECONDS", "RETRIEVAL_DEADLINE_SECONDS")
    @classmethod
    def _timeout_range(cls, v: float) -> float:
        if not 0 < v <= 300:
            raise ValueError(f"timeouts must be in (0, 300] seconds, got {v}")
        return v

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


class RetrievalConfig(BaseModel):
    """
    Immutable configuration for one ``MemoryRetriever``.

    The blend weights must form a convex combination so that the blended
    score stays in ``[0, 1]`` whenever the raw score and the keyword bonus
    do.
    """

    model_config = ConfigDict(frozen=True)

    dimension: int = Field(default=1024, ge=1)
    top_k: int = Field(default=3, ge=1)
    min_score: float = Field(default=0.0, ge=0.0, le=1.0)
    overfetch_multiplier: int = Field(default=2, ge=1)
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)
    context_char_budget: int | None = Field(default=400, ge=1)
    embed_timeout_seconds: float = Field(default=15.0, gt=0)
    search_timeout_seconds: float = Field(default=15.0, gt=0)
    retrieval_deadline_seconds: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def _weights_convex(self) -> RetrievalConfig:
        if abs(self.vector_weight + self.keyword_weight - 1.0) > 1e-9:
            raise ValueError(f"vector_weight + keyword_weight must equal 1.0, got {self.vector_weight} + {self.keyword_weight}")
        return self


    @classmethod
    def from_settings(cls, source: Settings) -> RetrievalConfig:
        """Copy the retrieval tunables out of a loaded ``Settings``."""
        return cls(
            dimension=source.EMBEDDING_DIMENSION,
            top_k=source.SEARCH_TOP_K,
            min_score=source.MIN_SCORE,
            overfetch_multiplier=source.OVERFETCH_MULTIPLIER,
            vector_weight=source.VECTOR_WEIGHT,
            keyword_weight=source.KEYWORD_WEIGHT,
            context_char_budget=source.CONTEXT_CHAR_BUDGET,
            embed_timeout_seconds=source.EMBED_TIMEOUT_SECONDS,
            search_timeout_seconds=source.SEARCH_TIMEOUT_SECONDS,
            retrieval_deadline_seconds=source.RETRIEVAL_DEADLINE_SECONDS,
        )


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this for infrastructure wiring only:
#     from petlog_rag.config.settings import settings
settings = Settings()
