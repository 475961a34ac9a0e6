"""
Application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./connection_hub.db"

    # Redis (pending OAuth authorizations)
    REDIS_URL: str = "redis://localhost:6379"

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 3001
    API_HTTPS_PORT: int = 3443

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Redirect targets
    FRONTEND_URL: str = "http://localhost:3000"
    BACKEND_URL: Optional[str] = None  # Overrides the computed OAuth redirect URI base

    # Platform OAuth credentials
    INSTAGRAM_CLIENT_ID: str = ""
    INSTAGRAM_CLIENT_SECRET: str = ""
    GOOGLE_CLIENT_ID: str = ""  # Shared by YouTube and Google Calendar
    GOOGLE_CLIENT_SECRET: str = ""
    TWITTER_CLIENT_ID: str = ""
    TWITTER_CLIENT_SECRET: str = ""
    SHOPIFY_API_KEY: str = ""
    SHOPIFY_API_SECRET: str = ""
    CALENDLY_CLIENT_ID: str = ""
    CALENDLY_CLIENT_SECRET: str = ""

    # OAuth behaviour
    OAUTH_HTTP_TIMEOUT_SECONDS: float = 30.0
    OAUTH_STATE_TTL_SECONDS: int = 600

    # Security
    ENCRYPTION_KEY: str = "change_me_32_byte_key_for_prod"
    AUTO_CREATE_DB_SCHEMA: bool = True

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()


def validate_security_settings() -> None:
    """Fail fast when insecure default secrets are still configured."""
    insecure_values = {
        "",
        "change_me_in_production",
        "change_me_32_byte_key_for_prod",
        "your_32_byte_encryption_key_here",
    }
    encryption_key = (settings.ENCRYPTION_KEY or "").strip()

    if encryption_key in insecure_values or len(encryption_key) < 32:
        raise ValueError("ENCRYPTION_KEY is insecure. Configure a strong non-default key (>=32 chars).")
