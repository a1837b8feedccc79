"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


# Host request-duration ceiling the cron budget must stay under.
SCHEDULER_HARD_LIMIT_SECONDS = 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Automail Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./automail.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10

    # Redis Settings (Celery broker/backend)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Security Settings
    # MUST be set in environment for production; defaults only safe for development
    SECRET_KEY: str = ""
    ENCRYPTION_KEY: str = ""
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 24 hours

    # Cron entry point (HTTP Basic)
    CRON_USERNAME: str = ""
    CRON_PASSWORD: str = ""

    # Scheduler Loop
    SCHEDULER_TIME_BUDGET_SECONDS: float = 45.0  # safe margin under the 60s host limit
    SCHEDULER_BATCH_SIZE: int = 50
    SCHEDULER_INTERVAL_SECONDS: int = 60
    JOB_LEASE_SECONDS: int = 300

    # Email delivery
    EMAIL_PROVIDER: str = "resend"
    DEFAULT_SENDER: str = "onboarding@resend.dev"
    RESEND_API_URL: str = "https://api.resend.com/emails"
    MAILER_TIMEOUT_SECONDS: float = 15.0

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    def validate_secrets(self) -> None:
        """Validate critical secrets and scheduler limits.

        Raises:
            RuntimeError: If production secrets are missing or the scheduler
                budget does not leave room under the host execution limit
        """
        if self.SCHEDULER_TIME_BUDGET_SECONDS >= SCHEDULER_HARD_LIMIT_SECONDS:
            raise RuntimeError(
                "SCHEDULER_TIME_BUDGET_SECONDS must be below "
                f"{SCHEDULER_HARD_LIMIT_SECONDS}s to leave room for final writes."
            )
        if self.is_production:
            if not self.SECRET_KEY:
                raise RuntimeError(
                    "CRITICAL: SECRET_KEY environment variable must be set in production. "
                    "Do not use default values."
                )
            if not self.ENCRYPTION_KEY:
                raise RuntimeError(
                    "CRITICAL: ENCRYPTION_KEY environment variable must be set in production. "
                    "Do not use default values."
                )
            if not self.CRON_USERNAME or not self.CRON_PASSWORD:
                raise RuntimeError(
                    "CRITICAL: CRON_USERNAME and CRON_PASSWORD must be set in production."
                )

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
