"""
Configuration & Environment Management for Rollcall
"""

import logging
import secrets
from functools import lru_cache
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings as PydanticBaseSettings

logger = logging.getLogger(__name__)


class DatabaseSettings(PydanticBaseSettings):
    """Database configuration settings"""

    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_NAME: str = "rollcall"

    # Connection Pool Settings
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_POOL_PRE_PING: bool = True
    DB_ECHO: bool = False
    # Managed Postgres providers require TLS
    DB_SSL: bool = False

    # Connection Timeouts
    DB_COMMAND_TIMEOUT: int = 60
    DB_STATEMENT_TIMEOUT: str = "60s"
    DB_LOCK_TIMEOUT: str = "30s"
    DB_IDLE_IN_TRANSACTION_TIMEOUT: str = "10min"

    # SQLite busy timeout (seconds) while waiting for the write lock
    DB_SQLITE_BUSY_TIMEOUT: int = 20

    # Full URL; takes precedence over the DB_* parts when set
    DATABASE_URL: Optional[str] = None

    @property
    def database_url(self) -> str:
        """Generate database URL for async connections"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+asyncpg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    class Config:
        env_prefix = ""
        case_sensitive = True


class SecuritySettings(PydanticBaseSettings):
    """Token verification settings for the identity collaborator"""

    JWT_SECRET_KEY: str = secrets.token_urlsafe(32)
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    class Config:
        env_prefix = "SECURITY_"
        case_sensitive = True


class CelerySettings(PydanticBaseSettings):
    """Background notification dispatch"""

    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"
    CELERY_TASK_SERIALIZER: str = "json"
    CELERY_RESULT_SERIALIZER: str = "json"
    CELERY_ACCEPT_CONTENT: List[str] = ["json"]
    CELERY_TIMEZONE: str = "UTC"
    CELERY_ENABLE_UTC: bool = True

    class Config:
        env_prefix = ""
        case_sensitive = True


class MonitoringSettings(PydanticBaseSettings):
    """Logging and health settings"""

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    HEALTH_CHECK_PATH: str = "/health"

    class Config:
        env_prefix = "MONITORING_"
        case_sensitive = True


class RegistrationSettings(PydanticBaseSettings):
    """Business rules of the registration engine"""

    # Check-in opens this many hours before the event starts
    CHECK_IN_WINDOW_HOURS: int = 24
    # Attendees may not cancel themselves inside this many hours of the start
    ATTENDEE_CANCELLATION_CUTOFF_HOURS: int = 24

    CHECK_IN_CODE_LENGTH: int = 6
    CHECK_IN_CODE_ALPHABET: str = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
    CHECK_IN_CODE_MAX_ATTEMPTS: int = 10

    BATCH_MAX_REGISTRATIONS: int = 100
    BATCH_MAX_EVENTS: int = 50
    BATCH_MAX_USERS: int = 50
    BULK_ADMIT_MAX: int = 50

    NOTIFICATIONS_ENABLED: bool = True

    class Config:
        env_prefix = "REGISTRATION_"
        case_sensitive = True


class Settings(PydanticBaseSettings):
    """Main application settings"""

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    TESTING: bool = False
    VERSION: str = "1.0.0"

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Rollcall"

    # CORS Configuration
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        elif isinstance(v, list):
            return v
        return []

    # Component Settings
    database: DatabaseSettings = DatabaseSettings()
    security: SecuritySettings = SecuritySettings()
    celery: CelerySettings = CelerySettings()
    monitoring: MonitoringSettings = MonitoringSettings()
    registration: RegistrationSettings = RegistrationSettings()

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        return self.database.database_url

    class Config:
        env_file = ".env"
        case_sensitive = True
        validate_assignment = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
