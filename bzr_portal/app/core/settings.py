"""
Application settings with validation using pydantic-settings.
Validates all required environment variables at startup.
"""
import socket
from urllib.parse import quote_plus
from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _resolve_db_host(host: str) -> str:
    """Resolve DB host to IP so asyncpg avoids getaddrinfo in asyncio context (e.g. in Docker)."""
    if not host or host in ("localhost", "127.0.0.1"):
        return host
    try:
        return socket.gethostbyname(host)
    except socket.gaierror:
        return host


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    DB_USER: str = Field(..., description="PostgreSQL username")
    DB_PASSWORD: str = Field(..., description="PostgreSQL password")
    DB_NAME: str = Field(..., description="PostgreSQL database name")
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: str = Field(default="5432", description="PostgreSQL port")

    # Database pool configuration
    DB_POOL_SIZE: int = Field(default=20, description="Database connection pool size")
    DB_MAX_OVERFLOW: int = Field(default=40, description="Database max overflow connections")
    DB_POOL_RECYCLE: int = Field(default=3600, description="Database connection recycle time (seconds)")

    # Auth (Supabase issues the tokens, we only verify them)
    SUPABASE_JWT_SECRET: Optional[str] = Field(default=None, description="Supabase project JWT secret")
    SUPABASE_JWT_AUDIENCE: str = Field(default="authenticated", description="Expected JWT audience")

    # CORS configuration
    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated list of allowed CORS origins")

    # Environment
    ENVIRONMENT: str = Field(default="production", description="Environment: development or production")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    # Public URL used to build referral links
    APP_URL: str = Field(default="https://bzrportal.com", description="Public portal URL")

    # Object storage
    STORAGE_BACKEND: str = Field(default="s3", description="Object store backend: s3 or local")
    LOCAL_STORAGE_DIR: str = Field(default="storage", description="Root directory for the local backend")
    WASABI_ENDPOINT_URL: str = Field(default="https://s3.wasabisys.com", description="S3-compatible endpoint")
    WASABI_REGION: str = Field(default="eu-central-1", description="S3 region")
    WASABI_ACCESS_KEY_ID: Optional[str] = Field(default=None, description="S3 access key")
    WASABI_SECRET_ACCESS_KEY: Optional[str] = Field(default=None, description="S3 secret key")
    WASABI_USER_DOCUMENTS_BUCKET: str = Field(default="user-documents", description="Bucket for user documents")
    OBJECT_STORE_MAX_ATTEMPTS: int = Field(default=4, description="Max attempts per object store call (incl. retries)")
    MAX_UPLOAD_BYTES: int = Field(default=50 * 1024 * 1024, description="Hard limit for a single upload")

    # Daily referral expiry sweep (UTC hour)
    REFERRAL_SWEEP_HOUR_UTC: int = Field(default=1, ge=0, le=23, description="Hour of the daily expiry sweep")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        if v not in ("development", "production"):
            raise ValueError("ENVIRONMENT must be 'development' or 'production'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if v.upper() not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v.upper()

    @field_validator("STORAGE_BACKEND")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("s3", "local"):
            raise ValueError("STORAGE_BACKEND must be 's3' or 'local'")
        return v

    def validate_production_settings(self) -> list[str]:
        """
        Validate that all required settings are present in production.
        Returns list of missing settings.
        """
        errors = []

        if self.ENVIRONMENT == "production":
            if not self.SUPABASE_JWT_SECRET:
                errors.append("SUPABASE_JWT_SECRET is required in production")
            if not self.ALLOWED_ORIGINS:
                errors.append("ALLOWED_ORIGINS is required in production")
            if self.STORAGE_BACKEND == "local":
                errors.append("STORAGE_BACKEND=local is not allowed in production")
            if self.STORAGE_BACKEND == "s3":
                if not self.WASABI_ACCESS_KEY_ID:
                    errors.append("WASABI_ACCESS_KEY_ID is required in production")
                if not self.WASABI_SECRET_ACCESS_KEY:
                    errors.append("WASABI_SECRET_ACCESS_KEY is required in production")

        return errors

    @property
    def db_url(self) -> str:
        """Get database URL. Resolve host to IP so connections work in Docker/async context."""
        host = _resolve_db_host(self.DB_HOST)
        password = quote_plus(self.DB_PASSWORD)
        return f"postgresql+asyncpg://{self.DB_USER}:{password}@{host}:{self.DB_PORT}/{self.DB_NAME}"

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get list of allowed CORS origins."""
        if not self.ALLOWED_ORIGINS:
            return []
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
        # Validate production settings
        errors = _settings.validate_production_settings()
        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)
    return _settings
