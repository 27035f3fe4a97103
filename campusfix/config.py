from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/campusfix"

    @field_validator("DATABASE_URL", mode="before")
    @classmethod
    def convert_database_url(cls, v: str) -> str:
        """Convert postgresql:// to postgresql+asyncpg:// for async support."""
        if v and v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    DOCS_ENABLED: bool = True

    # Daily recurring-task distribution
    DISTRIBUTION_ENABLED: bool = True
    DISTRIBUTION_CRON_HOUR: int = 6
    DISTRIBUTION_CRON_MINUTE: int = 0
    DISTRIBUTION_SKILL: str = "cleaning"
    DISTRIBUTION_LOCATION_KIND: str = "room"

    # SLA monitoring (hours per severity)
    SLA_CHECK_ENABLED: bool = True
    SLA_CHECK_INTERVAL_MINUTES: int = 15
    SLA_HOURS_CRITICAL: int = 2
    SLA_HOURS_HIGH: int = 4
    SLA_HOURS_MEDIUM: int = 24
    SLA_HOURS_LOW: int = 48

    # Legacy direct-close path
    OTP_LENGTH: int = 4

    # Bucket used when a block / coverage area is blank
    DEFAULT_LOCATOR: str = "GENERAL"

    @field_validator("OTP_LENGTH")
    @classmethod
    def otp_is_four_digits(cls, v: int) -> int:
        if v != 4:
            raise ValueError("OTP_LENGTH must be 4")
        return v

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def sqlalchemy_echo(self) -> bool:
        """SQL echo is never enabled in production."""
        return self.DEBUG and not self.is_production

    @property
    def sla_hours(self) -> dict[str, int]:
        return {
            "critical": self.SLA_HOURS_CRITICAL,
            "high": self.SLA_HOURS_HIGH,
            "medium": self.SLA_HOURS_MEDIUM,
            "low": self.SLA_HOURS_LOW,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
