"""Settings and platform-aware default paths."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from platformdirs import user_data_dir
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_DB_FILENAME = "promptvault.db"
_APP_NAME = "promptvault"


def default_db_path() -> Path:
    """Return the platform-appropriate default database path."""
    data_dir = Path(user_data_dir(_APP_NAME))
    return data_dir / _DB_FILENAME


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Database
    DATABASE_URL: str | None = Field(
        default=None,
        description="SQLAlchemy URL. Empty = SQLite file in the user data dir.",
    )

    # Analysis provider
    OPENAI_API_KEY: str | None = Field(
        default=None,
        description="OpenAI API key. Without it analysis uses the keyword fallback.",
    )
    ANALYSIS_MODEL: str = Field(default="gpt-4o-mini", description="Model used for analysis")
    ANALYSIS_TIMEOUT_SECONDS: float = Field(default=20.0, gt=0)
    FREE_ANALYSES_LIMIT: int = Field(
        default=10,
        ge=0,
        description="Monthly AI analyses for free accounts",
    )

    # Writes
    WRITE_RETRY_ATTEMPTS: int = Field(
        default=3,
        ge=1,
        description="Attempts for read-decide-write sequences that lose a race",
    )

    # Accounts
    LINK_CODE_TTL_MINUTES: int = Field(default=10, ge=1)

    # HTTP
    APP_URL: str = Field(default="http://localhost:8000", description="Public base URL")
    CORS_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed CORS origins",
    )

    # Chat bot
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_WEBHOOK_SECRET: str | None = None
    TELEGRAM_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    # Payment webhooks
    STRIPE_WEBHOOK_SECRET: str | None = None
    LEMONSQUEEZY_WEBHOOK_SECRET: str | None = None

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=False, description="Emit single-line JSON logs")

    @field_validator("DATABASE_URL")
    @classmethod
    def fix_database_url(cls, v: str | None) -> str | None:
        """Hosted Postgres hands out postgres:// but SQLAlchemy needs postgresql+psycopg2://"""
        if not v:
            return None
        for prefix in ("postgres://", "postgresql://"):
            if v.startswith(prefix):
                return v.replace(prefix, "postgresql+psycopg2://", 1)
        return v

    @property
    def database_target(self) -> str | Path:
        return self.DATABASE_URL or default_db_path()

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
