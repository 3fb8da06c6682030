"""
ShopSync Analytics
Centralized Configuration Management

Pydantic settings with environment variable support for the store connection,
the external feed source, the sync job's data-shaping knobs and the API.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional, List

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IdentityMode(str, Enum):
    """How materialized orders are identified across sync runs"""
    BOUNDED_UPSERT = "bounded_upsert"
    UNBOUNDED_APPEND = "unbounded_append"


class StatusStrategyName(str, Enum):
    """Where a materialized order's status comes from"""
    RANDOM = "random"
    SOURCE = "source"


class PlacementMode(str, Enum):
    """How a materialized order's placement timestamp is chosen"""
    RECENT_JITTER = "recent_jitter"
    HASHED_BACKDATE = "hashed_backdate"


class DatabaseSettings(BaseSettings):
    """Relational store configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="shopsync", description="Database name")
    user: str = Field(default="shopsync", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    create_tables: bool = Field(default=True, description="Create missing tables on startup")
    url: Optional[str] = Field(default=None, alias="DATABASE_URL", description="Full async URL (overrides host/port)")

    @property
    def async_url(self) -> str:
        """SQLAlchemy URL with an async driver; plain postgres URLs get asyncpg"""
        if self.url:
            for prefix in ("postgres://", "postgresql://"):
                if self.url.startswith(prefix):
                    return "postgresql+asyncpg://" + self.url[len(prefix):]
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis cache configuration for dashboard responses"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=False, description="Cache dashboard responses in Redis")
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=20, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    analytics_ttl: int = Field(default=300, description="Dashboard cache TTL in seconds")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class SourceSettings(BaseSettings):
    """External e-commerce feed configuration"""

    model_config = SettingsConfigDict(env_prefix="SOURCE_")

    base_url: str = Field(
        default="https://fake-store-api.mock.beeceptor.com/api",
        description="Feed API base URL",
    )
    products_path: str = Field(default="/products", description="Product feed path")
    orders_path: str = Field(default="/orders", description="Order feed path")
    timeout_seconds: float = Field(default=30.0, description="Per-request timeout")
    api_key: Optional[SecretStr] = Field(default=None, description="Optional bearer token for the feed")


class SyncSettings(BaseSettings):
    """
    Sync job configuration.

    The shaping ranges are inclusive on both ends.
    """

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    identity_mode: IdentityMode = Field(default=IdentityMode.UNBOUNDED_APPEND, description="Order identity policy")
    status_strategy: StatusStrategyName = Field(default=StatusStrategyName.RANDOM, description="Order status source")
    placement_mode: PlacementMode = Field(default=PlacementMode.RECENT_JITTER, description="Order date placement")
    jitter_minutes: int = Field(default=60, ge=1, description="Recent-jitter window in minutes")
    backdate_days: int = Field(default=14, ge=1, description="Hashed-backdate window in days")

    multiplier_min: int = Field(default=1, ge=1, description="Min copies per source order")
    multiplier_max: int = Field(default=3, ge=1, description="Max copies per source order")
    items_min: int = Field(default=1, ge=1, description="Min distinct products per order")
    items_max: int = Field(default=3, ge=1, description="Max distinct products per order")
    quantity_min: int = Field(default=1, ge=1, description="Min quantity per line")
    quantity_max: int = Field(default=5, ge=1, description="Max quantity per line")

    random_seed: Optional[int] = Field(default=None, description="Seed for reproducible runs")
    cron: str = Field(default="0 * * * *", description="Schedule for the hourly deployment")

    @model_validator(mode="after")
    def validate_ranges(self) -> "SyncSettings":
        """Validate min/max pairs"""
        for name in ("multiplier", "items", "quantity"):
            low = getattr(self, f"{name}_min")
            high = getattr(self, f"{name}_max")
            if low > high:
                raise ValueError(f"{name}_min ({low}) must not exceed {name}_max ({high})")
        return self


class SecuritySettings(BaseSettings):
    """Security and Authentication Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    jwt_secret_key: SecretStr = Field(default="jwt-secret-change-me", alias="JWT_SECRET_KEY", description="JWT secret key")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM", description="JWT algorithm")
    jwt_expiration_hours: int = Field(default=24, alias="JWT_EXPIRATION_HOURS", description="JWT expiration in hours")

    # Single demo account gating the dashboard
    demo_email: str = Field(default="demo@shopsync.dev", alias="DEMO_EMAIL", description="Dashboard login email")
    demo_password: SecretStr = Field(default="shopsync", alias="DEMO_PASSWORD", description="Dashboard login password")

    # Rate limiting
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS", description="Rate limit requests")
    rate_limit_window_seconds: int = Field(default=60, alias="RATE_LIMIT_WINDOW_SECONDS", description="Rate limit window")

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Application settings.

    One section per subsystem; each section reads its own prefixed
    environment variables, the top level also reads .env.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="shopsync-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
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
    """Process-wide settings, loaded once. Call get_settings.cache_clear() after changing the environment."""
    return Settings()
