"""
Application Settings for the Paywall Backend

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Stripe keys and the JWT secret may be left empty in development and
    testing; production refuses to start without them.
    """

    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS / Redirect Configuration
    frontend_url: str = "http://localhost:5173"
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    checkout_success_url: str = "http://localhost:5173/success"
    checkout_cancel_url: str = "http://localhost:5173/cancel"

    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: str = "sqlite+aiosqlite:///./paywall.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False

    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    # Auth (tokens are issued elsewhere, only verified here)
    jwt_secret: Optional[str] = None
    jwt_algorithm: str = "HS256"
    jwt_audience: Optional[str] = None

    # Email (Resend)
    resend_api_key: Optional[str] = None
    email_from_address: str = "billing@example.com"
    email_from_name: str = "Paywall"

    # Plan seed defaults (amounts in minor units)
    initial_plan_amount: int = 200
    initial_plan_trial_days: int = 3
    recurring_plan_amount: int = 1000
    recurring_plan_interval: str = "week"
    plan_currency: str = "eur"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_production_secrets(self) -> "Settings":
        """Require provider and auth secrets when running in production."""
        if self.is_production:
            missing = [
                name
                for name in ("stripe_secret_key", "stripe_webhook_secret", "jwt_secret")
                if not getattr(self, name)
            ]
            if missing:
                raise ValueError(
                    f"Missing required settings for production: {', '.join(missing).upper()}"
                )

        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def async_database_url(self) -> str:
        """Database URL rewritten for the async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("postgres://"):
            return url.replace("postgres://", "postgresql+asyncpg://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
