"""
Configuration and settings for the orchard backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Relational store (any SQLAlchemy URL, e.g. sqlite:///data/gardens.db)
    database_url: Optional[str] = Field(default=None)

    # Flat JSON document store, used when no database_url is configured
    data_file: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)
    seed_sample_data: bool = Field(default=True)

    # Uploaded photos
    upload_dir: str = Field(default="uploads")
    public_dir: str = Field(default="public")
    max_upload_files: int = Field(default=10)

    # S3-compatible storage for photos
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Per-cell write locks (Redis)
    redis_url: Optional[str] = Field(default=None)
    lock_prefix: str = Field(default="orchard:lock:")
    lock_timeout_seconds: float = Field(default=10.0)

    backup_filename: str = Field(default="saurieng_backup.zip")
    log_level: str = Field(default="INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
