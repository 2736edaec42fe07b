"""Shared configuration for SkillSync.

The Config class is immutable, validated via pydantic-settings, and designed
to be passed explicitly (no global singleton). Environment variables are
prefixed with SKILLSYNC_ (e.g., SKILLSYNC_DB_PATH).
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SKILLSYNC_HOME = Path("~/.skillsync").expanduser()

# Default embedding width (all-MiniLM-L6-v2 class models)
DEFAULT_DIMENSIONS = 384


class Config(BaseSettings):
    """Application configuration with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="SKILLSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Storage
    db_path: Path = Field(
        default=SKILLSYNC_HOME / "skillsync.db",
        description="SQLite database holding skills, embeddings and sync state",
    )
    index_path: Optional[Path] = Field(
        default=None,
        description="HNSW index snapshot path (defaults next to db_path)",
    )
    db_driver: Literal["auto", "native", "snapshot"] = Field(
        default="auto",
        description="Storage driver: auto (probe), native (file), snapshot (in-memory image)",
    )
    db_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Busy timeout for the storage engine"
    )

    # Registry
    registry_url: str = Field(
        default="http://127.0.0.1:8787/v1",
        description="Base URL of the remote skill registry",
    )
    registry_api_key: str | None = Field(
        default=None, description="Bearer token for the registry"
    )
    registry_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Per-request registry timeout"
    )
    registry_offline: bool = Field(
        default=False, description="Never contact the registry"
    )

    # Sync
    sync_page_size: int = Field(
        default=100, ge=1, le=1000, description="Registry page size"
    )
    sync_max_retries: int = Field(
        default=2, ge=0, le=10, description="Retries per page on transient errors"
    )
    sync_check_interval_seconds: float = Field(
        default=60.0, gt=0, description="Background due-check period"
    )
    sync_on_start: bool = Field(
        default=True, description="Sync immediately on start when due"
    )

    # Vector index
    use_hnsw: bool = Field(
        default=True, description="Use the HNSW backend when it can be loaded"
    )
    embedding_dimensions: int = Field(
        default=DEFAULT_DIMENSIONS, ge=1, description="Embedding vector width"
    )
    hnsw_m: int = Field(default=16, ge=2, description="HNSW graph connectivity")
    hnsw_ef_construction: int = Field(
        default=200, ge=1, description="HNSW build-time search breadth"
    )
    hnsw_ef_search: int = Field(
        default=100, ge=1, description="HNSW query-time search breadth"
    )
    hnsw_max_elements: int = Field(
        default=100_000, ge=1, description="Maximum number of indexed vectors"
    )
    hnsw_auto_save: bool = Field(
        default=False, description="Save the index snapshot after each mutation"
    )

    # Embeddings
    embedding_provider: Literal["none", "openai", "gemini"] = Field(
        default="none",
        description="Embedding provider for vector search",
    )
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
        validation_alias="OPENAI_API_KEY",
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        validation_alias="OPENAI_EMBEDDING_MODEL",
    )
    gemini_api_key: str | None = Field(
        default=None,
        description="Gemini API key",
        validation_alias=AliasChoices("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    gemini_embedding_model: str = Field(
        default="gemini-embedding-001",
        validation_alias="GEMINI_EMBEDDING_MODEL",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Log level for the skillsync logger"
    )

    @field_validator("db_path", "index_path", mode="before")
    @classmethod
    def expand_path(cls, value: str | Path | None) -> Path | None:
        if value is None or value == "":
            return None
        return Path(value).expanduser().resolve()

    @field_validator("registry_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def validate_provider_keys(self):
        if self.embedding_provider == "openai" and not self.openai_api_key:
            raise ValueError(
                "OPENAI_API_KEY is required when embedding_provider='openai'"
            )
        if self.embedding_provider == "gemini" and not self.gemini_api_key:
            raise ValueError(
                "GEMINI_API_KEY (or GOOGLE_API_KEY) is required when embedding_provider='gemini'"
            )
        return self

    def get_index_path(self) -> Path:
        """HNSW snapshot location; derived from db_path when unset."""
        if self.index_path is not None:
            return self.index_path
        return self.db_path.with_suffix(".hnsw")

    def with_overrides(self, **kwargs) -> "Config":
        """Create new Config with overrides (immutable pattern)."""
        return self.model_copy(update=kwargs)


__all__ = ["Config", "SKILLSYNC_HOME", "DEFAULT_DIMENSIONS"]
