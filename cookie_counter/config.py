"""
Configuration and settings for the cookie counter service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from cookie_counter.types import LogPolicy, PhotoStorageKind

DEFAULT_GEOCODING_URL = "https://api.opencagedata.com/geocode/v1/json"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    log_level: str = Field(default="INFO")

    # Database. mongodb:// URLs select the document store, anything else is
    # handed to SQLAlchemy. Unset means in-memory.
    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "MONGO_URI", "database_url"),
    )
    mongo_db_name: str = Field(default="cookiecounter")
    log_policy: LogPolicy = Field(default=LogPolicy.APPEND)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Photo uploads
    photo_storage: PhotoStorageKind = Field(default=PhotoStorageKind.LOCAL)
    upload_dir: str = Field(default="uploads")
    max_upload_bytes: int = Field(default=5 * 1024 * 1024)
    normalize_photos: bool = Field(default=True)
    photo_max_width: int = Field(default=800)
    photo_quality: int = Field(default=80)

    # S3
    s3_bucket: str = Field(default="cookiecounter--uploads")
    s3_endpoint: Optional[str] = Field(default=None)
    s3_public_read: bool = Field(default=True)
    aws_region: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Geocoding
    geocoding_api_key: Optional[str] = Field(default=None)
    geocoding_url: str = Field(default=DEFAULT_GEOCODING_URL)
    geocoding_timeout: float = Field(default=10.0)

    @property
    def geocoding_enabled(self) -> bool:
        return bool(self.geocoding_api_key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
