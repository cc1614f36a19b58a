"""Configuration management for the delivery backend."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RouteSettings(BaseModel):
    """Thresholds used by the route sequencer."""

    # Priority tiers
    high_value_threshold: int = Field(default=25000, description="Order value for high tier (CLP)")
    medium_value_threshold: int = Field(default=15000, description="Order value for medium tier (CLP)")
    high_age_minutes: float = Field(default=45, description="Waiting time for high tier")
    medium_age_minutes: float = Field(default=20, description="Waiting time for medium tier")
    priority_multipliers: dict[str, float] = Field(
        default_factory=lambda: {"high": 0.7, "medium": 1.0, "low": 1.3}
    )

    # Travel and service time
    average_speed_kmh: float = Field(default=30.0, description="Assumed city speed")
    base_service_minutes: int = Field(default=15, description="Base time per stop")
    minutes_per_dish: int = Field(default=2, description="Extra time per dish unit")
    minutes_between_stops: int = Field(default=15, description="Arrival-time hop estimate")

    # Fuel
    fuel_efficiency_km_per_liter: float = Field(default=12.0)
    fuel_price_per_liter: float = Field(default=1200.0, description="CLP per liter")

    prioritize_high_value: bool = True


class TrackingSettings(BaseModel):
    """Location publishing throttle profiles."""

    idle_interval_seconds: float = Field(default=30.0, description="Idle driver write interval")
    active_interval_seconds: float = Field(default=10.0, description="Active delivery write interval")


class RateLimitTier(BaseModel):
    """A single fixed-window rate limit tier."""

    max_requests: int = Field(ge=1)
    window_seconds: int = Field(ge=1)
    message: str
    include_user_agent: bool = False


def _default_rate_limit_tiers() -> dict[str, RateLimitTier]:
    return {
        "auth": RateLimitTier(
            max_requests=5,
            window_seconds=15 * 60,
            message="Too many authentication attempts. Please try again in 15 minutes.",
        ),
        "api": RateLimitTier(
            max_requests=100,
            window_seconds=15 * 60,
            message="Too many API requests. Please try again later.",
            include_user_agent=True,
        ),
        "sensitive": RateLimitTier(
            max_requests=10,
            window_seconds=60 * 60,
            message="Too many sensitive operations. Please try again in an hour.",
        ),
        "upload": RateLimitTier(
            max_requests=20,
            window_seconds=10 * 60,
            message="Too many file uploads. Please try again later.",
        ),
        "search": RateLimitTier(
            max_requests=50,
            window_seconds=5 * 60,
            message="Too many search requests. Please try again later.",
        ),
    }


class FeeSettings(BaseModel):
    """Checkout fees applied on top of the dish subtotal."""

    service_fee_percentage: float = Field(default=0.12, ge=0, le=1)
    service_fee_enabled: bool = True
    delivery_base_rate: int = Field(default=0, ge=0)
    free_delivery_threshold: int = Field(default=25000, ge=0)
    delivery_fee_enabled: bool = False


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="moai", description="Service name")
    app_version: str = Field(default="development", description="Reported version")
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Public base URL used in redirects and email links",
    )

    # Store Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis URL")

    # API Configuration
    api_port: int = Field(default=8000, description="API server port")
    api_host: str = Field(default="0.0.0.0", description="API server host")

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(default="json", description="Log format")

    # Security
    admin_token: str | None = Field(default=None, description="Bearer token for admin routes")

    # Payment gateway
    mercadopago_access_token: str | None = Field(default=None)
    mercadopago_public_key: str | None = Field(default=None)
    mercadopago_api_url: str = Field(default="https://api.mercadopago.com")
    request_timeout: float = Field(default=10.0, description="Outbound HTTP timeout in seconds")

    # Geocoding
    google_maps_api_key: str | None = Field(default=None)
    geocoding_region: str = Field(default="cl", description="Region bias for geocoding")

    # Push notifications
    fcm_project_id: str | None = Field(default=None)
    fcm_client_email: str | None = Field(default=None)
    fcm_private_key: str | None = Field(default=None)
    notification_channel_version: str = Field(default="moai-notifications-v1")

    # Storage
    storage_bucket: str | None = Field(default=None)

    # Email
    smtp_host: str = Field(default="smtp.gmail.com")
    smtp_port: int = Field(default=587)
    smtp_user: str | None = Field(default=None)
    smtp_password: str | None = Field(default=None)
    smtp_use_tls: bool = Field(default=True)

    # Domain settings
    fees: FeeSettings = Field(default_factory=FeeSettings)
    routing: RouteSettings = Field(default_factory=RouteSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    rate_limits: dict[str, RateLimitTier] = Field(default_factory=_default_rate_limit_tiers)

    # Monitoring
    monitor_history_size: int = Field(default=1000, description="Uptime metrics kept in memory")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
