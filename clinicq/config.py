"""Application configuration."""

from datetime import time
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="ClinicQ API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Redis
    redis_host: str = Field(default="localhost", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")

    # Clinic clock
    clinic_timezone: str = Field(
        default="UTC",
        alias="CLINIC_TIMEZONE",
        description="IANA timezone used as the providers' local clock",
    )

    # Scheduling rules
    cancellation_lead_hours: int = Field(default=24, ge=0, alias="CANCELLATION_LEAD_HOURS")
    avg_service_minutes: int = Field(default=15, ge=1, alias="AVG_SERVICE_MINUTES")

    # Per provider-day arbitration
    lock_backend: str = Field(default="local", alias="LOCK_BACKEND")
    lock_timeout_seconds: float = Field(default=5.0, gt=0, alias="LOCK_TIMEOUT_SECONDS")
    lock_lease_seconds: float = Field(default=30.0, gt=0, alias="LOCK_LEASE_SECONDS")

    # Sweeper
    sweeper_enabled: bool = Field(default=True, alias="SWEEPER_ENABLED")
    sweep_interval_minutes: int = Field(default=15, ge=1, alias="SWEEP_INTERVAL_MINUTES")
    reminder_interval_minutes: int = Field(default=60, ge=1, alias="REMINDER_INTERVAL_MINUTES")
    end_of_day_cutoff: time = Field(default=time(23, 30), alias="END_OF_DAY_CUTOFF")

    # Notifications
    notification_backend: str = Field(default="log", alias="NOTIFICATION_BACKEND")

    # Firebase
    firebase_credentials_path: str | None = Field(
        default=None,
        alias="FIREBASE_CREDENTIALS_PATH",
        description="Path to Firebase service account JSON file",
    )

    firebase_config_json: str | None = Field(
        default=None,
        alias="FIREBASE_CONFIG_JSON",
        description="Raw JSON string of the Firebase service account",
    )

    # Provider schedule cache
    schedule_cache_enabled: bool = Field(default=False, alias="SCHEDULE_CACHE_ENABLED")
    schedule_cache_ttl_seconds: int = Field(default=300, alias="SCHEDULE_CACHE_TTL_SECONDS")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def uses_redis_locks(self) -> bool:
        """Whether provider-day arbitration goes through Redis."""
        return self.lock_backend.lower() == "redis"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
