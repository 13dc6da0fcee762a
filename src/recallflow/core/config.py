"""Configuration management for RecallFlow."""

from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingProvider(str, Enum):
    """Supported embedding generators."""
    OPENAI = "openai"
    HASHING = "hashing"  # Deterministic, offline
    NONE = "none"


class StoreBackend(str, Enum):
    """Supported persistent vector stores."""
    SQLITE = "sqlite"
    MEMORY = "memory"
    NONE = "none"


class Settings(BaseSettings):
    """Global settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="RECALLFLOW_",
        extra="ignore",
    )

    # OpenAI settings
    openai_api_key: Optional[SecretStr] = Field(default=None, alias="OPENAI_API_KEY")
    openai_api_base: Optional[str] = Field(default=None, alias="OPENAI_API_BASE")

    # Persistent store
    database_path: str = Field(default="recallflow.db", alias="RECALLFLOW_DATABASE_PATH")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")


class MemoryConfig(BaseModel):
    """Sizing, lifetime and ranking defaults for the memory sub-stores."""

    # Short-term memory
    memory_size: int = Field(default=10, ge=1)
    short_term_ttl_hours: float = Field(default=24.0, gt=0)

    # Tool cache
    tool_cache_size: int = Field(default=1000, ge=1)
    tool_cache_ttl_hours: float = Field(default=6.0, gt=0)

    # Long-term memory
    long_term_similarity: float = Field(default=0.7, ge=0.0, le=1.0)
    long_term_limit: int = Field(default=10, ge=1)
    long_term_retention_days: int = Field(default=90, ge=1)

    # Personalization memory
    personalization_similarity: float = Field(default=0.6, ge=0.0, le=1.0)
    personalization_limit: int = Field(default=20, ge=1)
    personalization_retention_days: int = Field(default=180, ge=1)

    # Maintenance
    cleanup_interval_seconds: float = Field(default=3600.0, gt=0)

    @property
    def short_term_ttl(self) -> timedelta:
        return timedelta(hours=self.short_term_ttl_hours)

    @property
    def tool_cache_ttl(self) -> timedelta:
        return timedelta(hours=self.tool_cache_ttl_hours)

    @property
    def long_term_retention(self) -> timedelta:
        return timedelta(days=self.long_term_retention_days)

    @property
    def personalization_retention(self) -> timedelta:
        return timedelta(days=self.personalization_retention_days)


class EmbeddingConfig(BaseModel):
    """Configuration for the embedding generator."""

    provider: EmbeddingProvider = EmbeddingProvider.HASHING
    model: str = "text-embedding-3-small"
    dimensions: int = Field(default=1536, ge=1)
    api_key: Optional[SecretStr] = None
    api_base: Optional[str] = None
    timeout: float = Field(default=30.0, ge=1.0)
    max_retries: int = Field(default=3, ge=0)


class StoreConfig(BaseModel):
    """Configuration for the persistent vector store."""

    backend: StoreBackend = StoreBackend.SQLITE
    path: str = "recallflow.db"


class RecallConfig(BaseModel):
    """Main configuration for the memory subsystem."""

    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "RecallConfig":
        """Build a configuration seeded from environment settings."""
        settings = settings or get_settings()
        embedding = EmbeddingConfig(
            api_key=settings.openai_api_key,
            api_base=settings.openai_api_base,
            provider=(
                EmbeddingProvider.OPENAI
                if settings.openai_api_key is not None
                else EmbeddingProvider.HASHING
            ),
        )
        return cls(
            embedding=embedding,
            store=StoreConfig(path=settings.database_path),
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "RecallConfig":
        """Load configuration from a file."""
        import json
        import yaml

        path = Path(path)
        content = path.read_text()

        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".json":
            data = json.loads(content)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        return cls.model_validate(data)

    def to_file(self, path: str | Path) -> None:
        """Save configuration to a file."""
        import json
        import yaml

        path = Path(path)
        data = self.model_dump(mode="json")

        if path.suffix in (".yaml", ".yml"):
            content = yaml.dump(data, default_flow_style=False)
        elif path.suffix == ".json":
            content = json.dumps(data, indent=2)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        path.write_text(content)


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset the global settings instance."""
    global _settings
    _settings = None
