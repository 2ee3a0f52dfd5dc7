#!/usr/bin/env python3
"""
Centralized Configuration Module using Pydantic Settings

This module provides type-safe, environment-based configuration for the
message delivery reliability layer. All configuration is centralized here to
ensure the rate limiter, circuit breaker, delivery pipeline and job lock agree
on their defaults.

Architectural Decision: Pydantic Settings for type safety and validation
- Environment variable loading with .env support
- Type validation at startup (fail fast on misconfiguration)
- Nested, read-only views per component (settings.redis, settings.delivery, ...)
- Easy testing with reload_settings()
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RedisSettings(BaseSettings):
    """
    Redis configuration for the shared store.

    STAGE-STORE.0: Redis connection configuration
    """

    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=100, description="Maximum total connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=5, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class StoreSettings(BaseSettings):
    """
    Shared store call policy.

    Every call the rate limiter, job lock, dead letter store and violation
    tracker make against the shared store is bounded by this timeout.
    """

    STORE_OPERATION_TIMEOUT: float = Field(default=2.0, gt=0, description="Per-call store timeout (seconds)")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class CircuitBreakerSettings(BaseSettings):
    """
    Circuit breaker configuration for the upstream carrier.

    STAGE-CB: Circuit breaker thresholds
    """

    CB_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Failures before opening circuit")
    CB_RECOVERY_TIMEOUT: float = Field(default=60.0, ge=0, description="Seconds before attempting recovery")
    CB_HALF_OPEN_MAX_PROBES: int | None = Field(
        default=None,
        ge=1,
        description="Concurrent probes allowed while half-open (unset = unbounded)",
    )
    CB_SEND_TIMEOUT: float = Field(default=30.0, gt=0, description="Upstream send timeout in seconds")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class RateLimitSettings(BaseSettings):
    """
    Token bucket configuration.

    STAGE-RL: Rate limiting thresholds
    """

    RATE_LIMIT_CAPACITY: float = Field(default=100, gt=0, description="Bucket capacity (tokens)")
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=3600, gt=0, description="Full refill window")
    RATE_LIMIT_CAS_RETRIES: int = Field(default=5, ge=1, description="Compare-and-set attempts per admit")
    RATE_LIMIT_VIOLATION_HISTORY: int = Field(default=1000, ge=1, description="Violations kept per subject")
    RATE_LIMIT_VIOLATION_TTL: int = Field(default=7 * 24 * 60 * 60, ge=1, description="Violation list TTL")
    RATE_LIMIT_USAGE_TTL: int = Field(default=24 * 60 * 60, ge=1, description="Usage counter TTL")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class DeliverySettings(BaseSettings):
    """
    Delivery retry, dead letter and dispatch configuration.

    STAGE-DLV: Delivery pipeline defaults
    """

    DELIVERY_MAX_RETRIES: int = Field(default=3, ge=1, description="Attempts per recipient")
    DELIVERY_INITIAL_DELAY_MS: int = Field(default=1000, ge=0, description="First backoff delay")
    DELIVERY_MAX_DELAY_MS: int = Field(default=8000, ge=0, description="Backoff delay cap")
    DELIVERY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1, description="Backoff growth factor")
    DELIVERY_MAX_CONCURRENCY: int = Field(default=100, ge=1, description="In-flight sends per broadcast")
    DLQ_TTL_SECONDS: int = Field(default=24 * 60 * 60, ge=1, description="Dead letter retention")
    DLQ_INDEX_MAX_LENGTH: int = Field(default=10_000, ge=1, description="Dead letter index bound")
    DISPATCH_WORKERS: int = Field(default=4, ge=1, description="Broadcast dispatcher workers")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class JobLockSettings(BaseSettings):
    """Distributed job lock defaults."""

    JOB_LOCK_DEFAULT_TTL_MS: int = Field(default=30_000, ge=1, description="acquire() default TTL")
    JOB_LOCK_WITH_LOCK_TTL_MS: int = Field(default=60_000, ge=1, description="with_lock() default TTL")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class LoggingSettings(BaseSettings):
    """
    Logging configuration for structured logging.

    STAGE-L: Logging configuration

    Architectural Decision: structlog for production-grade logging
    """

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class ApplicationSettings(BaseSettings):
    """General application settings."""

    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="SMS Delivery Core", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=True)


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration sections.

    STAGE-0: Centralized configuration initialization

    Usage:
        from sms_delivery.core.config import get_settings

        settings = get_settings()
        threshold = settings.circuit_breaker.CB_FAILURE_THRESHOLD
        retries = settings.delivery.DELIVERY_MAX_RETRIES
    """

    # Redis settings
    REDIS_HOST: str = Field(default="localhost", description="Redis server host")
    REDIS_PORT: int = Field(default=6379, description="Redis server port")
    REDIS_DB: int = Field(default=0, description="Redis database number")
    REDIS_PASSWORD: str | None = Field(default=None, description="Redis password (if required)")
    REDIS_MAX_CONNECTIONS: int = Field(default=100, description="Maximum total connections")
    REDIS_SOCKET_TIMEOUT: int = Field(default=5, description="Socket timeout in seconds")
    REDIS_SOCKET_CONNECT_TIMEOUT: int = Field(default=5, description="Connection timeout in seconds")
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(default=30, description="Health check interval in seconds")

    # Store settings
    STORE_OPERATION_TIMEOUT: float = Field(default=2.0, gt=0, description="Per-call store timeout (seconds)")

    # Circuit Breaker settings
    CB_FAILURE_THRESHOLD: int = Field(default=5, ge=1, description="Failures before opening circuit")
    CB_RECOVERY_TIMEOUT: float = Field(default=60.0, ge=0, description="Seconds before attempting recovery")
    CB_HALF_OPEN_MAX_PROBES: int | None = Field(default=None, ge=1, description="Half-open probe limit")
    CB_SEND_TIMEOUT: float = Field(default=30.0, gt=0, description="Upstream send timeout in seconds")

    # Rate Limiting settings
    RATE_LIMIT_CAPACITY: float = Field(default=100, gt=0, description="Bucket capacity (tokens)")
    RATE_LIMIT_WINDOW_SECONDS: float = Field(default=3600, gt=0, description="Full refill window")
    RATE_LIMIT_CAS_RETRIES: int = Field(default=5, ge=1, description="Compare-and-set attempts per admit")
    RATE_LIMIT_VIOLATION_HISTORY: int = Field(default=1000, ge=1, description="Violations kept per subject")
    RATE_LIMIT_VIOLATION_TTL: int = Field(default=7 * 24 * 60 * 60, ge=1, description="Violation list TTL")
    RATE_LIMIT_USAGE_TTL: int = Field(default=24 * 60 * 60, ge=1, description="Usage counter TTL")

    # Delivery settings
    DELIVERY_MAX_RETRIES: int = Field(default=3, ge=1, description="Attempts per recipient")
    DELIVERY_INITIAL_DELAY_MS: int = Field(default=1000, ge=0, description="First backoff delay")
    DELIVERY_MAX_DELAY_MS: int = Field(default=8000, ge=0, description="Backoff delay cap")
    DELIVERY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1, description="Backoff growth factor")
    DELIVERY_MAX_CONCURRENCY: int = Field(default=100, ge=1, description="In-flight sends per broadcast")
    DLQ_TTL_SECONDS: int = Field(default=24 * 60 * 60, ge=1, description="Dead letter retention")
    DLQ_INDEX_MAX_LENGTH: int = Field(default=10_000, ge=1, description="Dead letter index bound")
    DISPATCH_WORKERS: int = Field(default=4, ge=1, description="Broadcast dispatcher workers")

    # Job lock settings
    JOB_LOCK_DEFAULT_TTL_MS: int = Field(default=30_000, ge=1, description="acquire() default TTL")
    JOB_LOCK_WITH_LOCK_TTL_MS: int = Field(default=60_000, ge=1, description="with_lock() default TTL")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: Literal["json", "console"] = Field(default="json", description="Log output format")

    # Application settings
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = Field(
        default="development",
        description="Application environment"
    )
    APP_NAME: str = Field(default="SMS Delivery Core", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    # Nested configuration views
    @property
    def redis(self) -> RedisSettings:
        """Get Redis settings."""
        return RedisSettings(
            REDIS_HOST=self.REDIS_HOST,
            REDIS_PORT=self.REDIS_PORT,
            REDIS_DB=self.REDIS_DB,
            REDIS_PASSWORD=self.REDIS_PASSWORD,
            REDIS_MAX_CONNECTIONS=self.REDIS_MAX_CONNECTIONS,
            REDIS_SOCKET_TIMEOUT=self.REDIS_SOCKET_TIMEOUT,
            REDIS_SOCKET_CONNECT_TIMEOUT=self.REDIS_SOCKET_CONNECT_TIMEOUT,
            REDIS_HEALTH_CHECK_INTERVAL=self.REDIS_HEALTH_CHECK_INTERVAL,
        )

    @property
    def store(self) -> StoreSettings:
        """Get shared store call policy."""
        return StoreSettings(STORE_OPERATION_TIMEOUT=self.STORE_OPERATION_TIMEOUT)

    @property
    def circuit_breaker(self) -> CircuitBreakerSettings:
        """Get circuit breaker settings."""
        return CircuitBreakerSettings(
            CB_FAILURE_THRESHOLD=self.CB_FAILURE_THRESHOLD,
            CB_RECOVERY_TIMEOUT=self.CB_RECOVERY_TIMEOUT,
            CB_HALF_OPEN_MAX_PROBES=self.CB_HALF_OPEN_MAX_PROBES,
            CB_SEND_TIMEOUT=self.CB_SEND_TIMEOUT,
        )

    @property
    def rate_limit(self) -> RateLimitSettings:
        """Get rate limit settings."""
        return RateLimitSettings(
            RATE_LIMIT_CAPACITY=self.RATE_LIMIT_CAPACITY,
            RATE_LIMIT_WINDOW_SECONDS=self.RATE_LIMIT_WINDOW_SECONDS,
            RATE_LIMIT_CAS_RETRIES=self.RATE_LIMIT_CAS_RETRIES,
            RATE_LIMIT_VIOLATION_HISTORY=self.RATE_LIMIT_VIOLATION_HISTORY,
            RATE_LIMIT_VIOLATION_TTL=self.RATE_LIMIT_VIOLATION_TTL,
            RATE_LIMIT_USAGE_TTL=self.RATE_LIMIT_USAGE_TTL,
        )

    @property
    def delivery(self) -> DeliverySettings:
        """Get delivery pipeline settings."""
        return DeliverySettings(
            DELIVERY_MAX_RETRIES=self.DELIVERY_MAX_RETRIES,
            DELIVERY_INITIAL_DELAY_MS=self.DELIVERY_INITIAL_DELAY_MS,
            DELIVERY_MAX_DELAY_MS=self.DELIVERY_MAX_DELAY_MS,
            DELIVERY_BACKOFF_MULTIPLIER=self.DELIVERY_BACKOFF_MULTIPLIER,
            DELIVERY_MAX_CONCURRENCY=self.DELIVERY_MAX_CONCURRENCY,
            DLQ_TTL_SECONDS=self.DLQ_TTL_SECONDS,
            DLQ_INDEX_MAX_LENGTH=self.DLQ_INDEX_MAX_LENGTH,
            DISPATCH_WORKERS=self.DISPATCH_WORKERS,
        )

    @property
    def job_lock(self) -> JobLockSettings:
        """Get job lock settings."""
        return JobLockSettings(
            JOB_LOCK_DEFAULT_TTL_MS=self.JOB_LOCK_DEFAULT_TTL_MS,
            JOB_LOCK_WITH_LOCK_TTL_MS=self.JOB_LOCK_WITH_LOCK_TTL_MS,
        )

    @property
    def logging(self) -> LoggingSettings:
        """Get logging settings."""
        return LoggingSettings(LOG_LEVEL=self.LOG_LEVEL, LOG_FORMAT=self.LOG_FORMAT)

    @property
    def app(self) -> ApplicationSettings:
        """Get application settings."""
        return ApplicationSettings(
            ENVIRONMENT=self.ENVIRONMENT,
            APP_NAME=self.APP_NAME,
            APP_VERSION=self.APP_VERSION,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"  # Ignore extra environment variables
    )


# Global settings instance (singleton pattern)
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance (singleton).

    STAGE-0.3: Settings initialization

    Returns:
        Settings: Global settings instance
    """
    global _settings

    if _settings is None:
        _settings = Settings()

    return _settings


def reload_settings() -> Settings:
    """
    Reload settings (useful for testing).

    Returns:
        Settings: New settings instance
    """
    global _settings
    _settings = Settings()
    return _settings
