"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    DATABASE_URL: str

    # Admin authentication
    SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12
    ADMIN_EMAIL: Optional[str] = None  # login disabled when unset
    ADMIN_PASSWORD: Optional[str] = None

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Application
    APP_NAME: str = "Quiz Desk"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    PUBLIC_BASE_URL: str = "http://localhost:3000"

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = 120
    RATE_LIMIT_PER_HOUR: int = 3000
    REGISTER_RATE_LIMIT_PER_MINUTE: int = 10

    # Quiz links
    LINK_TOKEN_BYTES: int = 32  # 64 hex characters
    LINK_TOKEN_MAX_RETRIES: int = 3

    # Quiz Settings
    DEFAULT_PASSING_SCORE: int = 70
    DEFAULT_MAX_ATTEMPTS: int = 1
    QUIZ_METADATA_CACHE_TTL: int = 300  # 5 minutes

    # Attempt timing
    TIME_SYNC_INTERVAL_SECONDS: int = 30
    TIME_SYNC_SKEW_SECONDS: int = 5
    RELOAD_ABUSE_THRESHOLD: int = 3

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
