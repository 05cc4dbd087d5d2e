"""Settings powered by pydantic settings. Override per field or via LOREKEEPER_* env vars."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lorekeeper.frecency import (
    DEFAULT_BOOST,
    DEFAULT_CLEANUP_THRESHOLD,
    DEFAULT_DECAY_FACTOR,
)

ENV_PREFIX = "LOREKEEPER_"

MODEL_NAME = "sentence-transformers/all-MiniLM-L6-v2"
EMBEDDING_DIMENSIONS = 384
ENCODERS = ("hashing", "sentence-transformers")


class Settings(BaseSettings):
    """Runtime configuration. Defaults match a small bot deployment."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        allow_inf_nan=False,
        validate_assignment=True,
        protected_namespaces=(),
    )

    # Storage
    db_path: str = "lorekeeper.db"

    # Encoder
    encoder: Literal["hashing", "sentence-transformers"] = "hashing"
    model_name: str = MODEL_NAME
    dimensions: int = Field(default=EMBEDDING_DIMENSIONS, gt=0)
    batch_size: int = Field(default=32, gt=0)
    encode_timeout: float | None = Field(default=None, gt=0)

    # Query embedding cache
    cache_ttl: float = Field(default=5 * 60.0, gt=0)  # seconds
    cache_max_size: int = Field(default=500, gt=0)

    # Retrieval and frecency
    min_similarity: float = Field(default=0.2, ge=0, le=1)
    frecency_boost: float = Field(default=DEFAULT_BOOST, ge=0)
    decay_factor: float = Field(default=DEFAULT_DECAY_FACTOR, gt=0, le=1)
    cleanup_threshold: float = Field(default=DEFAULT_CLEANUP_THRESHOLD, ge=0)

    log_level: str = "WARNING"

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()
