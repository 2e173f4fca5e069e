"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Workflow engine settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "Workflow Automation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./workflows.db"
    SQLALCHEMY_ECHO: bool = False

    # Redis / Celery
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: str = ""
    CELERY_RESULT_BACKEND: str = ""

    # Cron sweeps
    # Shared bearer secret for the external cron endpoint; empty disables the check
    CRON_SECRET: str = ""
    SCHEDULE_SWEEP_INTERVAL_SECONDS: int = 300
    SCHEDULE_WINDOW_MINUTES: int = 5
    SCHEDULE_TIMEZONE: str = "UTC"
    RESUME_BATCH_SIZE: int = 100

    # Step limits
    LOOP_DEFAULT_MAX_ITERATIONS: int = 100
    WEBHOOK_DEFAULT_TIMEOUT_MS: int = 10_000
    WEBHOOK_MAX_TIMEOUT_MS: int = 30_000

    # Email (SMTP)
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    EMAIL_FROM_ADDRESS: str = "workflows@localhost"
    EMAIL_FROM_NAME: str = "Workflow Automation"

    # Slack
    SLACK_API_BASE_URL: str = "https://slack.com/api"

    # Push notifications (FCM legacy HTTP API)
    FCM_SERVER_KEY: str = ""

    # Claude AI Settings
    ANTHROPIC_API_KEY: str = ""
    CLAUDE_MODEL: str = "claude-sonnet-4-5-20250929"
    CLAUDE_MAX_TOKENS: int = 4096
    CLAUDE_TEMPERATURE: float = 0.3
    CLAUDE_TIMEOUT: int = 120

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def celery_broker(self) -> str:
        """Broker URL, falling back to REDIS_URL."""
        return self.CELERY_BROKER_URL or self.REDIS_URL

    @property
    def celery_backend(self) -> str:
        return self.CELERY_RESULT_BACKEND or self.REDIS_URL

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Cached so the environment is read once per process.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
