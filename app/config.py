"""Application configuration."""

from decimal import Decimal
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
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
    app_name: str = Field(default="Appointment Service", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3003, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")

    # Collaborating services
    patient_service_url: str = Field(default="http://localhost:3001", alias="PATIENT_SERVICE_URL")
    doctor_service_url: str = Field(default="http://localhost:3002", alias="DOCTOR_SERVICE_URL")
    billing_service_url: str = Field(default="http://localhost:3004", alias="BILLING_SERVICE_URL")
    notification_service_url: str = Field(
        default="http://localhost:3007",
        alias="NOTIFICATION_SERVICE_URL",
    )
    collaborator_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        alias="COLLABORATOR_TIMEOUT_SECONDS",
        description="Timeout applied to every HTTP call to a collaborating service",
    )
    dispatch_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        alias="DISPATCH_TIMEOUT_SECONDS",
        description="Upper bound for a single post-commit billing/notification task",
    )

    # Billing policy
    consultation_fee: Decimal = Field(default=Decimal("500.00"), alias="CONSULTATION_FEE")
    no_show_fee: Decimal = Field(default=Decimal("100.00"), alias="NO_SHOW_FEE")

    # Wall-clock interpretation of stored appointment date/time
    clinic_timezone: str = Field(default="UTC", alias="CLINIC_TIMEZONE")

    @field_validator("clinic_timezone")
    @classmethod
    def validate_clinic_timezone(cls, v: str) -> str:
        """Reject names missing from the IANA time zone database."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown time zone: {v}") from e
        return v

    # CORS
    cors_origins_str: str = Field(
        default="*",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")

    # Rate limiting, per client IP
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_max_requests: int = Field(default=100, gt=0, alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_seconds: int = Field(default=900, gt=0, alias="RATE_LIMIT_WINDOW_SECONDS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def async_database_url(self) -> str:
        """Database URL with the async driver selected."""
        if self.database_url.startswith("postgresql://"):
            return self.database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return self.database_url

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]
