"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the API, the Celery worker
and the scheduled snapshot sweep.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="coach_engine")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)
    # Full URL override (takes precedence over the POSTGRES_* parts)
    DATABASE_URL: Optional[str] = Field(default=None)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Celery Configuration
    CELERY_BROKER_URL: str = Field(default="redis://redis:6379/0")
    CELERY_RESULT_BACKEND: str = Field(default="redis://redis:6379/0")

    # Member context snapshots
    SNAPSHOT_STALE_AFTER_S: int = Field(default=30 * 60, ge=60)
    SNAPSHOT_READ_CACHE_TTL_S: int = Field(default=30, ge=1)
    SNAPSHOT_REFRESH_BATCH_SIZE: int = Field(default=50, ge=1, le=500)
    # Wall-clock budget for one sweep; the sweep reports partial results past it.
    SNAPSHOT_REFRESH_BUDGET_S: int = Field(default=240, ge=5)
    # Bounded fan-out for per-member source reads.
    SNAPSHOT_FANOUT_WORKERS: int = Field(default=4, ge=1, le=16)
    # Min seconds between background rebuild enqueues for one member.
    SNAPSHOT_REBUILD_COOLDOWN_S: int = Field(default=60)

    # Scheduled trigger endpoint
    CRON_SECRET: Optional[str] = Field(default=None)
    CRON_COOLDOWN_S: int = Field(default=120)
    CRON_MAX_CLOCK_SKEW_S: int = Field(default=300)

    # Model provider
    OPENAI_API_KEY: Optional[str] = Field(default=None)
    COACH_AGENT_MODEL: str = Field(default="gpt-4o-mini")
    COACH_CHAT_MODEL: str = Field(default="gpt-4o")
    COACH_MEMORY_MODEL: str = Field(default="gpt-4o-mini")
    LLM_TIMEOUT_S: int = Field(default=30)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql://{self.POSTGRES_USER}:"
            f"{self.POSTGRES_PASSWORD}@"
            f"{self.POSTGRES_HOST}:"
            f"{self.POSTGRES_PORT}/"
            f"{self.POSTGRES_DB}"
        )


# Global settings instance
settings = Settings()
