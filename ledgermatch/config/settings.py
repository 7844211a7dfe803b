"""
Application Settings Module.

Centralized configuration management using Pydantic Settings.
Supports environment-based configuration for development and production.
"""
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment variables can be set directly or via a .env file.
    """

    # Application
    APP_NAME: str = "LedgerMatch"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE_ENABLED: bool = True
    LOG_FILE_PATH: str = "logs/ledgermatch.log"
    LOG_FILE_MAX_BYTES: int = 5 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: int = 5
    LOG_SQL_QUERIES: bool = False

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Database
    DATABASE_URL: str = "sqlite:///./ledgermatch.db"

    # Storage (archived raw uploads)
    LOCAL_UPLOADS_PATH: str = "uploads"

    # Uploads
    MAX_UPLOAD_SIZE_MB: int = 16
    BANK_UPLOAD_EXTENSIONS: list[str] = [".ofx", ".qfx", ".csv", ".xlsx"]
    COMPANY_UPLOAD_EXTENSIONS: list[str] = [".xlsx", ".csv"]

    # Reconciliation
    MATCHING_TIMEOUT_SECONDS: float = 300
    MATCH_SCORE_THRESHOLD: float = 0.65
    ANOMALY_WINDOW_DAYS: int = 30

    # Guarded test-data deletion
    ENABLE_TEST_DATA_DELETION: bool = False
    DELETION_MIN_DAYS_OLD: int = 1
    DELETION_REQUEST_TTL_MINUTES: int = 15

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_DEFAULT: str = "200/minute"
    RATE_LIMIT_UPLOAD: str = "30/minute"
    RATE_LIMIT_RECONCILE: str = "10/minute"
    RATE_LIMIT_DELETION: str = "10/minute"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"

    @property
    def effective_log_level(self) -> str:
        """
        Get effective log level based on environment.

        In production the minimum level is WARNING unless set higher.
        """
        if self.is_production:
            level_priority = {"DEBUG": 0, "INFO": 1, "WARNING": 2, "ERROR": 3, "CRITICAL": 4}
            configured_priority = level_priority.get(self.LOG_LEVEL.upper(), 2)
            return self.LOG_LEVEL.upper() if configured_priority >= 2 else "WARNING"
        return self.LOG_LEVEL.upper()

    @property
    def max_upload_size_bytes(self) -> int:
        """Upload ceiling in bytes."""
        return self.MAX_UPLOAD_SIZE_MB * 1024 * 1024

    def allowed_extensions(self, source_kind: str) -> list[str]:
        """Allowed file extensions for a source kind ('bank' or 'company')."""
        if source_kind == "bank":
            return [ext.lower() for ext in self.BANK_UPLOAD_EXTENSIONS]
        return [ext.lower() for ext in self.COMPANY_UPLOAD_EXTENSIONS]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once and reused.
    """
    return Settings()


# Convenience export
settings = get_settings()
