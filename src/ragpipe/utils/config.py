"""
Configuration utilities.
"""

import json
import os
from pathlib import Path
from typing import Any

import yaml

from pydantic import BaseModel, Field, model_validator

API_KEY_ENV_VARS = ("RAGPIPE_OPENAI_API_KEY", "OPENAI_API_KEY")


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")


class OpenAISettings(BaseModel):
    """Credentials and model names for the OpenAI collaborators."""
    api_key: str | None = None
    base_url: str | None = None
    embedding_model: str = "text-embedding-3-small"
    chat_model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1000, gt=0)


class RagSettings(BaseModel):
    """Chunking and retrieval settings."""
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)
    top_k: int = Field(default=3, gt=0)
    similarity_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    max_concurrent_embeddings: int = Field(default=8, gt=0)
    structure_aware: bool = False

    @model_validator(mode="after")
    def _overlap_below_chunk_size(self) -> "RagSettings":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class CacheSettings(BaseModel):
    """Embedding and query cache settings."""
    enabled: bool = True
    embedding_cache_minutes: float = Field(default=60, gt=0)
    query_cache_minutes: float = Field(default=30, gt=0)
    max_cache_size: int = Field(default=1000, ge=0)


class ResilienceSettings(BaseModel):
    """Retry and circuit breaker settings."""
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=2.0, ge=0)
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_seconds: float = Field(default=30.0, ge=0)


class BatchSettings(BaseModel):
    max_parallelism: int = Field(default=4, gt=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    enable_metrics: bool = True


class RagPipelineSettings(Config):
    """Top-level settings for a ragpipe deployment.

    Example ``ragpipe.yaml``:

        rag:
          chunk_size: 800
          top_k: 5
        cache:
          enabled: false
    """
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    rag: RagSettings = Field(default_factory=RagSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def load_settings(
    path: str | Path = "ragpipe.yaml",
    environ: dict[str, Any] | None = None,
) -> RagPipelineSettings:
    """
    Load pipeline settings from file.

    Missing files yield the defaults. An empty OpenAI API key is filled
    from RAGPIPE_OPENAI_API_KEY, then OPENAI_API_KEY.

    Args:
        path: Path to config file
        environ: Environment mapping (defaults to os.environ)

    Returns:
        RagPipelineSettings instance
    """
    path = Path(path)
    environ = os.environ if environ is None else environ

    if path.exists():
        settings = RagPipelineSettings.from_file(path)
    else:
        settings = RagPipelineSettings()

    if not settings.openai.api_key:
        for name in API_KEY_ENV_VARS:
            if environ.get(name):
                settings.openai.api_key = environ[name]
                break

    return settings
