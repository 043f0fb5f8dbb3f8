"""Application configuration utilities."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    database_url: str = Field(
        default="sqlite:///./charity.db", alias="DATABASE_URL"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    redis_ca_cert_path: str = Field(
        default="certs/redis_ca.pem", alias="REDIS_CA_CERT_PATH"
    )
    celery_broker_url: str | None = Field(
        default=None, alias="CELERY_BROKER_URL"
    )
    celery_result_backend: str | None = Field(
        default=None, alias="CELERY_RESULT_BACKEND"
    )
    auth0_domain: str | None = Field(default=None, alias="AUTH0_DOMAIN")
    auth0_audience: str | None = Field(default=None, alias="AUTH0_AUDIENCE")

    batch_default_payment_method: str = Field(
        default="cash", alias="BATCH_DEFAULT_PAYMENT_METHOD"
    )
    batch_processing_mode: Literal["inline", "celery"] = Field(
        default="inline", alias="BATCH_PROCESSING_MODE"
    )
    batch_max_upload_bytes: int = Field(
        default=10 * 1024 * 1024, alias="BATCH_MAX_UPLOAD_BYTES"
    )
    batch_notifications_enabled: bool = Field(
        default=True, alias="BATCH_NOTIFICATIONS_ENABLED"
    )

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    @property
    def broker_url(self) -> str:
        """Return the Celery broker URL, defaulting to Redis."""

        return self.celery_broker_url or self.redis_url

    @property
    def result_backend(self) -> str:
        """Return the Celery result backend, defaulting to the Redis URL."""

        if self.celery_result_backend:
            return self.celery_result_backend
        return self.redis_url

    @property
    def queue_batches(self) -> bool:
        """Return ``True`` when batch processing is handed to the worker."""

        return self.batch_processing_mode == "celery"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
