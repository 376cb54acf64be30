"""Application settings and configuration.

This module defines all configuration options for the hub and relay services.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Hub and relay share one settings object; each process only reads the
    fields that belong to its role. Settings can be overridden via environment
    variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Chat Bridge", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")

    # Registry store selection: "redis", "sql" or "memory"
    registry_backend: str = Field(default="redis", alias="HUB_REGISTRY_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    registry_key: str = Field(default="global:channels", alias="HUB_REGISTRY_KEY")
    routes_key: str = Field(default="global:routes", alias="HUB_ROUTES_KEY")
    database_url: str = Field(default="sqlite:///./chat_bridge.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Fan-out delivery policy
    default_deliver_url: str | None = Field(default=None, alias="HUB_DEFAULT_DELIVER_URL")
    delivery_max_attempts: int = Field(default=3, alias="HUB_DELIVERY_MAX_ATTEMPTS")
    delivery_backoff_base_seconds: float = Field(
        default=0.2,
        alias="HUB_DELIVERY_BACKOFF_BASE_SECONDS",
    )
    delivery_backoff_max_seconds: float = Field(
        default=2.0,
        alias="HUB_DELIVERY_BACKOFF_MAX_SECONDS",
    )
    delivery_timeout_seconds: float = Field(default=3.0, alias="HUB_DELIVERY_TIMEOUT_SECONDS")
    delivery_concurrency: int = Field(default=16, alias="HUB_DELIVERY_CONCURRENCY")
    shutdown_grace_seconds: float = Field(default=5.0, alias="HUB_SHUTDOWN_GRACE_SECONDS")

    # Content policy and registry hygiene
    block_mentions: bool = Field(default=True, alias="HUB_BLOCK_MENTIONS")
    prune_after_failures: int = Field(default=0, alias="HUB_PRUNE_AFTER_FAILURES")

    # Relay client settings
    relay_hub_url: str = Field(default="http://localhost:8000", alias="RELAY_HUB_URL")
    relay_deliver_url: str | None = Field(default=None, alias="RELAY_DELIVER_URL")
    relay_http_timeout_seconds: float = Field(default=5.0, alias="RELAY_HTTP_TIMEOUT_SECONDS")
    relay_max_attempts: int = Field(default=3, alias="RELAY_MAX_ATTEMPTS")
    relay_backoff_base_seconds: float = Field(default=0.2, alias="RELAY_BACKOFF_BASE_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )


settings = Settings()
