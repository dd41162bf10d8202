"""
Isha - Configuration
=====================
One ``BaseSettings`` model, filled from environment variables first and
the ``.env`` file beside the package second.

Every external collaborator (LLM service, vector database, workflow
webhooks) is addressed through a field here, so the same code runs
against a laptop Ollama + local LanceDB directory or a remote deployment
without edits.

Security
--------
- ``GOOGLE_API_KEY`` is typed as ``SecretStr``.  It is only required when
  ``LLM_PROVIDER="gemini"``; the raw value is never exposed in repr,
  logs, or tracebacks.

Dependency Injection
--------------------
``settings`` below is only the *default*.  Every component accepts an
explicit ``Settings`` instance, so tests and multi-configuration
deployments build their own.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings.

    Every field is loaded from environment variables (or ``.env``) and
    falls back to defaults for a single-machine deployment.

    Attributes
    ----------
    ENV : Literal["dev", "prod"]
        Environment mode controlling logging verbosity.
    LOG_LEVEL : str | None
        Overrides the ENV-derived log level when set.
    LLM_PROVIDER : Literal["ollama", "gemini"]
        Which LangChain chat model backs the LLM client.
    OLLAMA_BASE_URL : str
        Base URL of the Ollama chat-completion API.
    LLM_MODEL : str
        Model identifier for response generation.
    LANCEDB_URI : str
        LanceDB location: a local directory or a remote ``db://`` URI.
    LANCEDB_TABLE_NAME : str
        Collection (table) holding the document chunks.
    EMBEDDING_DIMENSION : int
        Length D of every embedding vector.
    CHUNK_SIZE / CHUNK_OVERLAP : int
        Sliding-window chunking parameters (characters).
    SEARCH_RESULTS_LIMIT : int
        Default ``k`` for retrieval.
    N8N_WEBHOOK_URL / FLOWISE_WEBHOOK_URL : str | None
        Workflow trigger endpoint and completion receiver endpoint.
    TASK_TIMEOUT_MS / TASK_POLL_INTERVAL_MS : int
        Long-running task wait budget and check interval.
    TASK_REPORT_LIMIT / TASK_HISTORY_LIMIT : int
        Most completion reports and finished tasks kept in memory.
    """

    # ── Paths ─────────────────────────────────────────────────────────
    BASE_DIR: Path = Path(__file__).resolve().parent.parent
    DATA_RAW_DIR: Path = BASE_DIR / "data" / "raw"
    DATA_PROCESSED_DIR: Path = BASE_DIR / "data" / "processed"

    # ── Runtime ───────────────────────────────────────────────────────
    ENV: Literal["dev", "prod"] = "dev"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None

    # ── LLM ───────────────────────────────────────────────────────────
    LLM_PROVIDER: Literal["ollama", "gemini"] = "ollama"
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    LLM_MODEL: str = "mistral"
    LLM_TEMPERATURE: float = 0.7
    GOOGLE_API_KEY: SecretStr | None = None

    # ── LanceDB ───────────────────────────────────────────────────────
    LANCEDB_URI: str = str(BASE_DIR / "data" / "lancedb")
    LANCEDB_TABLE_NAME: str = "documents"

    # ── Embeddings ────────────────────────────────────────────────────
    EMBEDDING_MODEL: str = "simple"
    EMBEDDING_DIMENSION: int = 384

    # ── Chunking & ingestion ──────────────────────────────────────────
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    MAX_FILE_SIZE: int = 10 * 1024 * 1024
    MAX_WORKERS: int = 4

    # ── Retrieval ─────────────────────────────────────────────────────
    SEARCH_RESULTS_LIMIT: int = 5

    # ── Workflow Webhooks ─────────────────────────────────────────────
    N8N_WEBHOOK_URL: str | None = None
    FLOWISE_WEBHOOK_URL: str | None = None
    WEBHOOK_SOURCE: str = "chatbot"
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0
    TASK_TIMEOUT_MS: int = 300_000
    TASK_POLL_INTERVAL_MS: int = 2_000
    TASK_REPORT_LIMIT: int = 1_024
    TASK_HISTORY_LIMIT: int = 256

    # ── Validators ────────────────────────────────────────────────────

    @field_validator("EMBEDDING_DIMENSION")
    @classmethod
    def _dimension_holds_features(cls, v: int) -> int:
        # 26 letters + 3 shape + 12 stop-words
        if v < 41:
            raise ValueError(f"EMBEDDING_DIMENSION must be ≥ 41, got {v}")
        return v


    @field_validator("CHUNK_SIZE", "SEARCH_RESULTS_LIMIT", "TASK_TIMEOUT_MS", "TASK_POLL_INTERVAL_MS", "TASK_REPORT_LIMIT", "TASK_HISTORY_LIMIT")
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"value must be > 0, got {v}")
        return v


    @field_validator("MAX_WORKERS")
    @classmethod
    def _workers_range(cls, v: int) -> int:
        if not 1 <= v <= 16:
            raise ValueError(f"MAX_WORKERS must be 1–16, got {v}")
        return v


    @model_validator(mode="after")
    def _overlap_below_chunk_size(self) -> "Settings":
        if not 0 <= self.CHUNK_OVERLAP < self.CHUNK_SIZE:
            raise ValueError(f"CHUNK_OVERLAP must be in [0, CHUNK_SIZE), got {self.CHUNK_OVERLAP} (CHUNK_SIZE={self.CHUNK_SIZE})")
        return self

    # ── Sources ───────────────────────────────────────────────────────
    model_config = SettingsConfigDict(env_file=Path(__file__).resolve().parent.parent / ".env", env_file_encoding="utf-8", extra="ignore")


# ── Default Instance ──────────────────────────────────────────────────
# Components fall back to this when no Settings is injected:
#     from isha.config.settings import settings
settings = Settings()
