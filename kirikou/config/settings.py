"""
Kirikou - Centralized Configuration
====================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr`` and has **no default value**.
  If the key is missing at startup, Pydantic will raise a ``ValidationError``
  with a clear error message.  The raw value is never exposed in repr,
  logs, or tracebacks.
- ``MONGO_URI`` is also ``SecretStr``.  It backs the shared rate-limit
  counters and usually embeds credentials.

Retrieval
---------
``RETRIEVAL_K`` passages are selected by maximal marginal relevance out of
``RETRIEVAL_FETCH_K`` nearest neighbours.  ``RETRIEVAL_LAMBDA`` trades
relevance (1.0) against diversity (0.0).

Rate limiting
-------------
At most ``RATE_LIMIT_REQUESTS`` admissions per ``RATE_LIMIT_WINDOW_SECONDS``
for every caller identity.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``).
    Fields *without* a default are **required**; the app will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr
        API key for Google AI Studio (Gemini).  **Required.**
    MONGO_URI : SecretStr
        MongoDB connection string for the rate-limit counter store.
        **Required.**  Contains credentials; never log raw value.
    ENV : Literal["dev", "prod"]
        Environment mode controlling default logging verbosity.
    LOG_LEVEL : Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None
        Explicit level overriding the ``ENV`` default.
    LLM_MODEL / LLM_TEMPERATURE : str / float
        Chat model driving the agent.
    EMBEDDING_MODEL : str
        Model identifier passed to ``GoogleGenerativeAIEmbeddings``.
    RETURN_INTERMEDIATE_STEPS : bool
        Default response mode.  ``False`` streams the answer, ``True``
        returns the answer with its source URLs as one JSON body.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_RAW_DIR: Path = BASE_DIR / "data" / "raw"
    DATA_PROCESSED_DIR: Path = BASE_DIR / "data" / "processed"
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None

    # ── API Keys (REQUIRED, no default) ───────────────────────────────
    GOOGLE_API_KEY: SecretStr

    # ── MongoDB (REQUIRED, no default) ────────────────────────────────
    MONGO_URI: SecretStr
    MONGO_DB_NAME: str = "kirikou"
    RATE_LIMIT_COLLECTION: str = "rate_limits"

    # ── Model Configuration ────────────────────────────────────────────
    EMBEDDING_MODEL: str = "gemini-embedding-001"
    LLM_MODEL: str = "gemini-2.0-flash"
    LLM_TEMPERATURE: float = 0.2

    # ── LanceDB ────────────────────────────────────────────────────────
    LANCEDB_TABLE_NAME: str = "idl_pages"

    # ── Retrieval (maximal marginal relevance) ─────────────────────────
    RETRIEVAL_K: int = 6
    RETRIEVAL_FETCH_K: int = 20
    RETRIEVAL_LAMBDA: float = 0.5

    # ── Rate Limiting ──────────────────────────────────────────────────
    RATE_LIMIT_REQUESTS: int = 1
    RATE_LIMIT_WINDOW_SECONDS: int = 10

    # ── Response Mode ──────────────────────────────────────────────────
    RETURN_INTERMEDIATE_STEPS: bool = False

    # ── Ingestion Parameters ───────────────────────────────────────────
    CHUNK_SIZE: int = 1000
    MAX_WORKERS: int = 4

    # ── HTTP Server ────────────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("CHUNK_SIZE")
    @classmethod
    def _chunk_size_positive(cls, v: int) -> int:
        if v < 50:
            raise ValueError(f"CHUNK_SIZE must be ≥ 50, got {v}")
        return v


    @field_validator("MAX_WORKERS")
    @classmethod
    def _workers_range(cls, v: int) -> int:
        if not 1 <= v <= 16:
            raise ValueError(f"MAX_WORKERS must be 1–16, got {v}")
        return v


    @field_validator("RETRIEVAL_LAMBDA")
    @classmethod
    def _lambda_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"RETRIEVAL_LAMBDA must be within [0, 1], got {v}")
        return v


    @field_validator("RETRIEVAL_K", "RETRIEVAL_FETCH_K", "RATE_LIMIT_REQUESTS", "RATE_LIMIT_WINDOW_SECONDS")
    @classmethod
    def _strictly_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v


    @model_validator(mode="after")
    def _fetch_k_covers_k(self) -> "Settings":
        if self.RETRIEVAL_FETCH_K < self.RETRIEVAL_K:
            raise ValueError(f"RETRIEVAL_FETCH_K ({self.RETRIEVAL_FETCH_K}) must be ≥ RETRIEVAL_K ({self.RETRIEVAL_K})")
        return self

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from kirikou.config.settings import settings
settings = Settings()
