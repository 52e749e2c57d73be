"""
Recall - Centralized Configuration
===================================
Uses ``pydantic-settings`` (``BaseSettings``) to load *all* configuration
from environment variables and the project-level ``.env`` file.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr`` and has **no default value**.
  If the key is missing at startup, Pydantic will raise a ``ValidationError``
  with a clear error message.  The raw value is never exposed in repr,
  logs, or tracebacks.

Limits
------
The embedding cache bounds (entries / bytes / TTL), the text truncation
cap and the row ceilings used by the query sanitizer all live here so a
deployment can tune them without touching code.
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
    Fields *without* a default are **required**; the service will refuse
    to start until they are provided.

    Attributes
    ----------
    GOOGLE_API_KEY : SecretStr
        API key for Google AI Studio (Gemini embeddings + chat).  **Required.**
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity.
    EMBEDDING_MODEL : str
        Model identifier passed to ``GoogleGenerativeAIEmbeddings``.
    EMBEDDING_DIMENSIONS : int
        Fixed vector length produced by ``EMBEDDING_MODEL``.
    LANCEDB_TABLE_NAME : str
        Table name inside the LanceDB on-disk database.
    SEARCH_MAX_K : int
        Hard ceiling on results returned by one similarity search.
    QUERY_MAX_ROWS : int
        Hard ceiling on rows any single generated query may return.
    """

    # ── Resolved Absolute Paths ────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    LANCEDB_PATH: Path = BASE_DIR / "data" / "lancedb"

    # ── Environment Mode ───────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"

    # ── API Keys (REQUIRED, no default) ───────────────────────────────
    GOOGLE_API_KEY: SecretStr

    # ── Model Configuration ────────────────────────────────────────────
    EMBEDDING_MODEL: str = "models/text-embedding-004"
    EMBEDDING_DIMENSIONS: int = 768
    LLM_MODEL: str = "gemini-2.5-flash"
    LLM_TEMPERATURE: float = 0.7

    # ── Embedding Client ───────────────────────────────────────────────
    EMBEDDING_TIMEOUT_SECONDS: float = 8.0
    EMBEDDING_MAX_TEXT_LENGTH: int = 10_000

    # ── Embedding Cache ────────────────────────────────────────────────
    EMBEDDING_CACHE_MAX_ENTRIES: int = 10_000
    EMBEDDING_CACHE_MAX_BYTES: int = 100 * 1024 * 1024
    EMBEDDING_CACHE_TTL_SECONDS: float = 24 * 60 * 60
    EMBEDDING_CACHE_ENTRY_OVERHEAD_BYTES: int = 100

    # ── LanceDB ────────────────────────────────────────────────────────
    LANCEDB_TABLE_NAME: str = "chat_embeddings"

    # ── Retrieval ──────────────────────────────────────────────────────
    SEARCH_TIMEOUT_SECONDS: float = 8.0
    SEARCH_DEFAULT_K: int = 5
    SEARCH_MAX_K: int = 100
    QUERY_MAX_ROWS: int = 1000
    FALLBACK_SCAN_LIMIT: int = 1000
    EXACT_MATCH_BONUS: int = 5
    SNIPPET_MAX_CHARS: int = 200

    # ── Validators ─────────────────────────────────────────────────────

    @field_validator("EMBEDDING_TIMEOUT_SECONDS", "SEARCH_TIMEOUT_SECONDS", "EMBEDDING_CACHE_TTL_SECONDS")
    @classmethod
    def _positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"timeouts and TTLs must be > 0, got {v}")
        return v


    @field_validator("EMBEDDING_DIMENSIONS", "EMBEDDING_MAX_TEXT_LENGTH", "EMBEDDING_CACHE_MAX_ENTRIES", "EMBEDDING_CACHE_MAX_BYTES", "SEARCH_DEFAULT_K", "SEARCH_MAX_K", "QUERY_MAX_ROWS", "FALLBACK_SCAN_LIMIT", "SNIPPET_MAX_CHARS")
    @classmethod
    def _positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"value must be ≥ 1, got {v}")
        return v


    @model_validator(mode="after")
    def _ceilings_consistent(self) -> "Settings":
        if self.SEARCH_MAX_K > self.QUERY_MAX_ROWS:
            raise ValueError(f"SEARCH_MAX_K ({self.SEARCH_MAX_K}) cannot exceed QUERY_MAX_ROWS ({self.QUERY_MAX_ROWS})")
        if not 1 <= self.SEARCH_DEFAULT_K <= self.SEARCH_MAX_K:
            raise ValueError(f"SEARCH_DEFAULT_K must be 1–{self.SEARCH_MAX_K}, got {self.SEARCH_DEFAULT_K}")
        return self

    # ── Pydantic Settings Configuration ────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Singleton Instance ─────────────────────────────────────────────────
# Import this throughout the project:
#     from recall.config.settings import settings
settings = Settings()
