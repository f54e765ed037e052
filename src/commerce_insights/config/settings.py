"""
Commerce Insights
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CommerceBackendSettings(BaseSettings):
    """Upstream commerce backend (orders, customers, variants)"""

    model_config = SettingsConfigDict(env_prefix="COMMERCE_")

    base_url: str = Field(default="http://localhost:9000", description="Commerce backend base URL")
    api_token: Optional[SecretStr] = Field(default=None, description="Admin bearer token")
    page_size: int = Field(default=100, ge=1, description="Fixed page size for collection fetches")
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")

    # Retry policy for idempotent page requests
    retry_attempts: int = Field(default=3, ge=1, description="Attempts per page request")
    retry_backoff_min: float = Field(default=0.5, ge=0, description="Minimum backoff in seconds")
    retry_backoff_max: float = Field(default=8.0, ge=0, description="Maximum backoff in seconds")


class EventAnalyticsSettings(BaseSettings):
    """On-site event tracker statistics service"""

    model_config = SettingsConfigDict(env_prefix="EVENTS_")

    api_url: str = Field(default="http://localhost:4000", description="Event analytics base URL")
    api_key: SecretStr = Field(default=SecretStr(""), description="X-API-Key header value")
    timeout: float = Field(default=15.0, gt=0, description="Request timeout in seconds")
    product_limit: int = Field(default=100, ge=1, description="Max products per stats request")


class SessionAnalyticsSettings(BaseSettings):
    """External session analytics platform (top-of-funnel traffic)"""

    model_config = SettingsConfigDict(env_prefix="SESSION_ANALYTICS_")

    enabled: bool = Field(default=False, description="Include session counts in the journey funnel")
    base_url: str = Field(default="http://localhost:3000", description="Session analytics host")
    report_path: str = Field(default="/api/analytics/ga4", description="Overview report path")
    timeout: float = Field(default=15.0, gt=0, description="Request timeout in seconds")


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=20, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    url: Optional[str] = Field(default=None, description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class CacheSettings(BaseSettings):
    """Result cache configuration"""

    model_config = SettingsConfigDict(env_prefix="CACHE_")

    backend: str = Field(default="memory", description="Cache backend: memory or redis")
    ttl_seconds: int = Field(default=300, ge=0, description="TTL for fetched collections")
    insight_ttl_seconds: int = Field(default=1800, ge=0, description="TTL for generated page insights")

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate backend value"""
        allowed = ["memory", "redis"]
        if v.lower() not in allowed:
            raise ValueError(f"Cache backend must be one of: {allowed}")
        return v.lower()


class AnalyticsSettings(BaseSettings):
    """Business rules for the aggregation engine"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    default_group_name: str = Field(default="Retail", description="Group for customers without one")
    group_id_prefix: str = Field(default="cusgroup_", description="Prefix identifying raw group ids")
    paid_orders_only: bool = Field(default=True, description="Derive revenue metrics from captured orders only")
    default_window_days: int = Field(default=30, ge=1, description="Default reporting window")


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="commerce-insights", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    commerce: CommerceBackendSettings = Field(default_factory=CommerceBackendSettings)
    events: EventAnalyticsSettings = Field(default_factory=EventAnalyticsSettings)
    session_analytics: SessionAnalyticsSettings = Field(default_factory=SessionAnalyticsSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
