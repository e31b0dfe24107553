"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

ENV_PREFIX = "RIDX_"
DEFAULT_CONFIG_PATH = Path("~/.config/repo-index/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "concurrency"): "embedding_concurrency",
    ("embeddings", "max_retries"): "embedding_max_retries",
    ("embeddings", "backoff_base"): "embedding_backoff_base",
    ("embeddings", "backoff_max"): "embedding_backoff_max",
    ("embeddings", "timeout"): "embedding_timeout",
    ("embeddings", "api_key"): "openai_api_key",
    ("embeddings", "base_url"): "openai_base_url",
    ("chunking", "max_tokens"): "max_tokens_per_chunk",
    ("chunking", "overlap_tokens"): "overlap_tokens",
    ("chunking", "encoding"): "tokenizer_encoding",
    ("chunking", "workers"): "chunk_workers",
    ("ingest", "document_concurrency"): "document_concurrency",
    ("retrieval", "top_k"): "top_k",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".repo-index" / "index.db")
    embedding_backend: Literal["hashed", "openai"] = "hashed"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = Field(default=384, ge=1)
    embedding_batch_size: int = Field(default=32, ge=1)
    embedding_concurrency: int = Field(default=4, ge=1)
    embedding_max_retries: int = Field(default=3, ge=0)
    embedding_backoff_base: float = Field(default=0.5, ge=0)
    embedding_backoff_max: float = Field(default=8.0, ge=0)
    embedding_timeout: float = Field(default=30.0, gt=0)
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    max_tokens_per_chunk: int = Field(default=500, ge=1)
    overlap_tokens: int = Field(default=50, ge=0)
    tokenizer_encoding: str = "cl100k_base"
    chunk_workers: int = Field(default=4, ge=1)
    document_concurrency: int = Field(default=8, ge=1)
    top_k: int = Field(default=10, ge=1)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @model_validator(mode="after")
    def _check_overlap(self) -> "Settings":
        if self.overlap_tokens >= self.max_tokens_per_chunk:
            raise ValueError("overlap_tokens must be smaller than max_tokens_per_chunk")
        return self

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with RIDX_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
