"""Application configuration settings."""

import os
from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_database_url() -> str:
    """Get the default database URL, using Fly Volume path if available."""
    if os.path.isdir("/data"):
        return "sqlite:////data/powertrackr.db"
    return "sqlite:///./powertrackr.db"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    PROJECT_NAME: str = "Powertrackr"
    VERSION: str = "0.1.0"
    DEBUG: bool = True
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    # Database - defaults to Fly Volume path if /data exists
    DATABASE_URL: str = _get_default_database_url()

    # Token + session authentication
    SECRET_KEY: str = "your-secret-key-change-this-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    SESSION_EXPIRE_DAYS: int = 30

    # GitHub OAuth redirect
    GITHUB_CLIENT_ID: str = ""
    GITHUB_REDIRECT_URI: str = "http://localhost:8000/api/auth/github/callback"

    # Billing policy
    MIN_MAIN_READING: Decimal = Decimal("1")
    DEFAULT_PAY_PER_KWH: Decimal = Decimal("12")
    CURRENCY_SYMBOL: str = "₱"

    # Live statistics feed
    STATS_INTERVAL_SECONDS: float = 1.0


settings = Settings()
