"""
Application configuration.

Loads settings from environment variables with sensible defaults.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # ==========================================================================
    # Environment
    # ==========================================================================

    environment: str = "development"
    debug: bool = True

    # ==========================================================================
    # API Server
    # ==========================================================================

    api_host: str = "0.0.0.0"
    api_port: int = 8000
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # ==========================================================================
    # Identity provider
    # ==========================================================================

    # "jwt" verifies tokens locally, "remote" calls identity_verify_url
    identity_provider: str = "jwt"

    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = ""
    jwt_issuer: str = ""

    identity_verify_url: str = ""
    identity_api_key: str = ""
    identity_timeout_seconds: float = 3.0

    # Membership lookup: one retry with backoff, then InfraFailure
    membership_retry_attempts: int = 2
    membership_retry_backoff_seconds: float = 0.2

    # ==========================================================================
    # Plans and trials
    # ==========================================================================

    plan_limits_file: str = ""
    trial_duration_days: int = 14
    trial_ending_soon_days: int = 3
    usage_warning_percentage: int = 80
    hard_limit_ratio: float = 1.2

    # ==========================================================================
    # Optional Services
    # ==========================================================================

    sentry_dsn: str = ""

    # ==========================================================================
    # Helpers
    # ==========================================================================

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
