"""
Configuration management for the event import pipeline.

Every group reads its own environment prefix (IMPORT_DB_, IMPORT_BATCH_,
IMPORT_SCHEMA_, GEOCODING_, IMPORT_JOB_) and falls back to a .env file.
The orchestrator and the schema builder do not read them directly; they
take explicit config objects built with ``from_settings()``.
"""

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="IMPORT_DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    url: str = "sqlite:///./data/imports.db"
    echo: bool = False


class PipelineSettings(BaseSettings):
    """General pipeline settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # HTTP settings
    http_timeout: int = 30  # seconds
    http_max_retries: int = 3
    http_retry_delay: float = 1.0  # seconds


class BatchSettings(BaseSettings):
    """Rows read per orchestrator invocation, per stage."""

    model_config = SettingsConfigDict(
        env_prefix="IMPORT_BATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    dataset_detection: int = 10000
    duplicate_analysis: int = 5000
    schema_detection: int = 10000
    geocoding: int = 100
    event_creation: int = 1000


class SchemaSettings(BaseSettings):
    """Progressive schema builder limits."""

    model_config = SettingsConfigDict(
        env_prefix="IMPORT_SCHEMA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    max_samples: int = 100
    max_unique_values: int = 100
    enum_threshold: int = 50
    enum_mode: Literal["count", "percentage"] = "count"
    max_depth: int = 3
    required_threshold: float = 0.9


class GeocodingSettings(BaseSettings):
    """Geocoding provider settings."""

    model_config = SettingsConfigDict(
        env_prefix="GEOCODING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    enabled: bool = True
    base_url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str = "EventImporter/1.0 (event import pipeline)"
    min_delay_seconds: float = 1.0
    # Unset: failed geocodes never block completion
    max_failure_rate: Optional[float] = None


class JobSettings(BaseSettings):
    """Import job housekeeping settings."""

    model_config = SettingsConfigDict(
        env_prefix="IMPORT_JOB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    stuck_threshold_hours: float = 2.0


class Settings(BaseSettings):
    """All importer settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    schema_builder: SchemaSettings = Field(default_factory=SchemaSettings)
    geocoding: GeocodingSettings = Field(default_factory=GeocodingSettings)
    jobs: JobSettings = Field(default_factory=JobSettings)


@lru_cache()
def get_settings() -> Settings:
    """Settings loaded once per process; tests build their own ``Settings()``."""
    return Settings()


settings = get_settings()
