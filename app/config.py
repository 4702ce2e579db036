"""
Application Configuration

Centralized configuration management using Pydantic settings.
Loads from environment variables with fallback to .env file.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production-0123456789"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Note: We use lru_cache on get_settings() to ensure we only load
    configuration once. Tests that need different values must call
    get_settings.cache_clear() after changing the environment.
    """

    # Database settings
    # Writes go through DATABASE_URL; reads may target a replica.
    DATABASE_URL: str = "postgresql://localhost/construction_tracker"
    DATABASE_READ_URL: Optional[str] = None
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Token settings
    SECRET_KEY: str = DEFAULT_SECRET_KEY
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "ConstructionTracker"
    JWT_AUDIENCE: str = "ConstructionTrackerUsers"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7

    # Password hashing cost
    BCRYPT_ROUNDS: int = 12

    # Transient storage failures
    STORAGE_RETRY_ATTEMPTS: int = 3
    STORAGE_RETRY_BACKOFF_SECONDS: float = 0.1

    # Redis for rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 120
    RATE_LIMIT_BURST: int = 20

    # Application settings
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def read_database_url(self) -> str:
        return self.DATABASE_READ_URL or self.DATABASE_URL

    def validate_for_startup(self) -> None:
        """Refuse to boot production with the development signing key."""
        if self.ENVIRONMENT == "production" and self.SECRET_KEY == DEFAULT_SECRET_KEY:
            raise RuntimeError("SECRET_KEY must be configured in production")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache ensures we only instantiate settings once.
    """
    return Settings()
