"""Application Configuration"""

from functools import lru_cache
from typing import List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "Coursemart Lifecycle Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_V1_PREFIX: str = "/api/v1"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600

    # Security & Authentication
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # CORS
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"
    ALLOWED_METHODS: str = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
    ALLOWED_HEADERS: str = "*"

    # Rate limiting (slowapi), applied per client address to every route
    RATE_LIMIT_DEFAULT: str = "100/minute"

    # Refund workflow
    # When true the four refund-approval writes share one transaction.
    # When false each step after the status change commits on its own and
    # failures are left for the reconciliation job.
    REFUND_CASCADE_ATOMIC: bool = True
    # Legacy path: build a completed bill from the course price when a paid
    # enrollment has no bill at all.
    REFUND_SYNTHESIZE_MISSING_BILL: bool = False

    # Reconciliation job
    RECONCILIATION_INTERVAL_MINUTES: int = 15
    RECONCILIATION_ALERT_THRESHOLD: int = 5
    RECONCILIATION_REPAIR_CASCADES: bool = True

    # Email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Coursemart <no-reply@resend.dev>"
    OPS_ALERT_EMAIL: str = ""

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("ALLOWED_ORIGINS")
    @classmethod
    def parse_origins(cls, v: str) -> List[str]:
        """Parse comma-separated origins into a list"""
        return [origin.strip() for origin in v.split(",")]

    @field_validator("ALLOWED_METHODS")
    @classmethod
    def parse_methods(cls, v: str) -> List[str]:
        """Parse comma-separated methods into a list"""
        return [method.strip() for method in v.split(",")]

    @field_validator("RECONCILIATION_INTERVAL_MINUTES", "RECONCILIATION_ALERT_THRESHOLD")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development environment"""
        return self.ENVIRONMENT.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def async_database_url(self) -> str:
        """DATABASE_URL with the asyncpg driver for plain postgresql:// URLs"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


@lru_cache
def get_settings() -> Settings:
    """
    Build the process-wide settings once.

    Only entry points (app factory, scripts, alembic) call this; everything
    else receives the Settings instance it was constructed with.
    """
    return Settings()
