"""
Configuration and settings for the listings backend.
"""

from __future__ import annotations

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from backend.classifier import MAX_UPLOAD_BYTES
from backend.references import DEFAULT_IMAGE_URL

PROJECT_ROOT = Path(__file__).resolve().parents[1]

# All three must be set for the remote store to be enabled.
REMOTE_STORE_ENV_VARS = {
    "s3_bucket": "S3_BUCKET",
    "aws_access_key_id": "AWS_ACCESS_KEY_ID",
    "aws_secret_access_key": "AWS_SECRET_ACCESS_KEY",
}


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    environment: str = Field(
        default="development", validation_alias=AliasChoices("APP_ENV", "ENVIRONMENT")
    )
    port: int = Field(default=8000)

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible object storage
    s3_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_public_base_url: Optional[str] = Field(default=None)
    s3_key_prefix: str = Field(default="listings")
    remote_timeout_seconds: float = Field(default=10.0)

    # Reject uploads instead of degrading when the remote store is missing.
    require_remote_store: bool = Field(default=False)

    # Local uploads
    upload_dir: Optional[str] = Field(default=None)
    public_base_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("PUBLIC_BASE_URL", "API_BASE_URL")
    )

    default_image_url: str = Field(default=DEFAULT_IMAGE_URL)
    max_upload_bytes: int = Field(default=MAX_UPLOAD_BYTES)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    def missing_remote_store_vars(self) -> list[str]:
        """Names of the remote-store variables that are unset or blank."""
        return [
            env_name
            for attr, env_name in REMOTE_STORE_ENV_VARS.items()
            if not (getattr(self, attr) or "").strip()
        ]

    @property
    def has_remote_store(self) -> bool:
        return not self.missing_remote_store_vars()

    @property
    def uploads_dir(self) -> Path:
        """
        Managed root for locally stored images.

        An explicit UPLOAD_DIR wins; production falls back to an ephemeral temp
        location, development to ``uploads/`` in the repository.
        """
        configured = (self.upload_dir or "").strip()
        if configured:
            return Path(configured).expanduser().resolve()
        if self.is_production:
            return Path(tempfile.gettempdir()) / "listing-uploads"
        return PROJECT_ROOT / "uploads"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
