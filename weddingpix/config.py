"""
Configuration and settings for the gallery backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEV_JWT_SECRET_KEY = "dev-only-insecure-secret"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Persistence adapter behind the gallery routes
    gallery_backend: Literal["memory", "postgres", "firestore"] = Field(
        default="memory"
    )
    database_url: Optional[str] = Field(default=None)

    # Firebase (Firestore + Storage)
    firebase_credentials: Optional[str] = Field(default=None)
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_storage_bucket: Optional[str] = Field(default=None)

    # Object storage
    storage_backend: Literal["memory", "s3", "firebase"] = Field(default="memory")
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_bucket: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Queue (Redis) for migration runs
    redis_url: Optional[str] = Field(default=None)
    redis_queue_key: str = Field(default="weddingpix:migrations")

    # Sessions
    # Only accepted while every backend is in memory.
    jwt_secret_key: str = Field(default=DEV_JWT_SECRET_KEY)
    jwt_algorithm: str = Field(default="HS256")
    session_ttl_hours: int = Field(default=24)

    # Admin login is disabled until a password is configured.
    admin_username: str = Field(default="admin")
    admin_password: Optional[str] = Field(default=None)

    # Gallery behaviour
    story_ttl_hours: int = Field(default=24)

    # Migration
    # Two writes per moved document, never more than 450 per batch.
    migration_batch_limit: int = Field(default=450, ge=2, le=450)
    validation_retry_delay_seconds: float = Field(default=1.0, ge=0)
    security_rules_path: str = Field(default="firestore.rules")

    @property
    def firebase_configured(self) -> bool:
        return bool(self.firebase_credentials or self.firebase_project_id)

    @property
    def uses_local_backends(self) -> bool:
        """True when no persistent store (SQL or Firestore) can be reached."""
        if self.use_in_memory_backends:
            return True
        return self.gallery_backend == "memory" and not self.firebase_configured

    @model_validator(mode="after")
    def require_jwt_secret(self) -> "Settings":
        if self.jwt_secret_key == DEV_JWT_SECRET_KEY and not self.uses_local_backends:
            raise ValueError("JWT_SECRET_KEY must be set when a persistent backend is configured")
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
