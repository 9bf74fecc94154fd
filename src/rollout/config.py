"""Application configuration using pydantic-settings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class StoreBackend(str, Enum):
    MEMORY = "memory"
    POSTGRES = "postgres"


class LockBackend(str, Enum):
    LOCAL = "local"
    REDIS = "redis"


class DatabaseSettings(BaseSettings):
    """Database configuration for the deployment audit store."""

    host: str = Field(default="localhost", alias="DB_HOST")
    port: int = Field(default=5432, alias="DB_PORT")
    name: str = Field(default="rollout", alias="DB_NAME")
    user: str = Field(default="rollout", alias="DB_USER")
    password: str = Field(default="", alias="DB_PASSWORD")
    pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")

    @property
    def async_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    model_config = {"env_prefix": "DB_", "extra": "ignore", "populate_by_name": True}


class RedisSettings(BaseSettings):
    """Redis configuration for per-deployment locks."""

    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: str = Field(default="", alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")
    lock_retry_interval: float = Field(default=0.1, alias="REDIS_LOCK_RETRY_INTERVAL")

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    model_config = {"env_prefix": "REDIS_", "extra": "ignore", "populate_by_name": True}


class KafkaSettings(BaseSettings):
    """Kafka configuration for deployment event publishing."""

    bootstrap_servers: str = Field(default="localhost:9092", alias="KAFKA_BOOTSTRAP_SERVERS")
    topic_prefix: str = Field(default="rollout", alias="KAFKA_TOPIC_PREFIX")
    enabled: bool = Field(default=False, alias="KAFKA_ENABLED")

    model_config = {"env_prefix": "KAFKA_", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    otlp_endpoint: str = Field(default="http://localhost:4317", alias="OTLP_ENDPOINT")
    service_name: str = Field(default="rollout-orchestrator", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class RolloutSettings(BaseSettings):
    """Engine-wide rollout tuning.

    Per-deployment timeouts and thresholds live on ``DeploymentConfig``;
    these values apply to every deployment the process runs.
    """

    probe_concurrency: int = Field(default=16, ge=1, alias="ROLLOUT_PROBE_CONCURRENCY")
    soft_error_rate_ceiling: float = Field(
        default=0.02, ge=0.0, le=1.0, alias="ROLLOUT_SOFT_ERROR_RATE_CEILING"
    )
    monitor_poll_interval_seconds: float = Field(
        default=5.0, gt=0, alias="ROLLOUT_MONITOR_POLL_INTERVAL"
    )
    rollback_max_attempts: int = Field(default=2, ge=1, le=5, alias="ROLLOUT_ROLLBACK_MAX_ATTEMPTS")
    rollback_health_window_seconds: float = Field(
        default=5.0, ge=0, alias="ROLLOUT_ROLLBACK_HEALTH_WINDOW"
    )
    rollback_timeout_seconds: float = Field(default=600.0, gt=0, alias="ROLLOUT_ROLLBACK_TIMEOUT")
    lock_ttl_seconds: int = Field(default=60, ge=1, alias="ROLLOUT_LOCK_TTL")
    lock_wait_seconds: float = Field(default=10.0, ge=0, alias="ROLLOUT_LOCK_WAIT")
    lock_backend: LockBackend = Field(default=LockBackend.LOCAL, alias="ROLLOUT_LOCK_BACKEND")
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY, alias="ROLLOUT_STORE_BACKEND")

    model_config = {"env_prefix": "ROLLOUT_", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    host: str = Field(default="0.0.0.0", alias="HOST")  # noqa: S104
    port: int = Field(default=8000, alias="PORT")
    graceful_shutdown_timeout: int = Field(default=30, alias="GRACEFUL_SHUTDOWN_TIMEOUT")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    kafka: KafkaSettings = Field(default_factory=KafkaSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    rollout: RolloutSettings = Field(default_factory=RolloutSettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
