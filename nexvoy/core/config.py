# nexvoy/core/config.py
import os
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Storage
    database_url: str = Field(default="sqlite:///./nexvoy.db", alias="DATABASE_URL")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    repository_backend: Literal["memory", "sqlalchemy"] = Field(
        default="memory",
        alias="REPOSITORY_BACKEND",
        description="Booking repository backing store",
    )

    # Per-booking critical section
    lock_backend: Literal["local", "redis"] = Field(
        default="local",
        alias="LOCK_BACKEND",
        description="local = in-process threading locks, redis = cross-process locks",
    )
    booking_lock_ttl_seconds: int = Field(default=90, alias="BOOKING_LOCK_TTL_SECONDS")
    booking_lock_timeout_seconds: float = Field(
        default=5.0,
        alias="BOOKING_LOCK_TIMEOUT_SECONDS",
        description="How long a caller waits for a booking lock before giving up",
    )

    # Booking lifecycle
    booking_pending_ttl_minutes: int = Field(
        default=15,
        alias="BOOKING_PENDING_TTL_MINUTES",
        description="Minutes a pending booking is held before the reaper expires it",
    )
    reference_max_attempts: int = Field(default=5, alias="REFERENCE_MAX_ATTEMPTS")

    # Background jobs
    reaper_interval_seconds: int = Field(default=60, alias="REAPER_INTERVAL_SECONDS")
    reaper_batch_size: int = Field(default=200, alias="REAPER_BATCH_SIZE")
    refund_retry_interval_seconds: int = Field(default=300, alias="REFUND_RETRY_INTERVAL_SECONDS")
    refund_retry_batch_size: int = Field(default=100, alias="REFUND_RETRY_BATCH_SIZE")

    # Payments
    stripe_secret_key: Optional[SecretStr] = Field(default=None, alias="STRIPE_SECRET_KEY")
    payment_timeout_seconds: int = Field(default=8, alias="PAYMENT_TIMEOUT_SECONDS")
    payment_max_network_retries: int = Field(default=1, alias="PAYMENT_MAX_NETWORK_RETRIES")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "booking_pending_ttl_minutes",
        "reaper_interval_seconds",
        "reaper_batch_size",
        "refund_retry_interval_seconds",
        "refund_retry_batch_size",
        "reference_max_attempts",
        "booking_lock_ttl_seconds",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("stripe_secret_key", mode="before")
    @classmethod
    def _blank_secret_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() in {"prod", "production"}

    @property
    def stripe_configured(self) -> bool:
        return self.stripe_secret_key is not None


settings = Settings()
