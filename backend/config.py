"""
Identity Core - Configuration Management

Centralized configuration for environment variables, CORS, and matching settings.
This module ensures:
- No hardcoded secrets
- No missing required variables
- Environment-specific settings (dev/staging/prod)
- Tunable matcher and backfill behaviour
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="",
        description="Async SQLAlchemy database URL (postgresql+asyncpg://...)"
    )
    POSTGRES_HOST: str = Field(default="")
    POSTGRES_PORT: int = Field(default=5432)
    POSTGRES_DB: str = Field(default="agency")
    POSTGRES_USER: str = Field(default="")
    POSTGRES_PASSWORD: str = Field(default="")
    POSTGRES_SSLMODE: str = Field(default="require")
    DATABASE_ECHO: bool = Field(default=False)

    # ==================== SERVICE AUTH ====================
    INTERNAL_API_KEY: str = Field(
        default="",
        description="Primary API key for service-to-service calls"
    )
    INTERNAL_API_KEYS: str = Field(
        default="",
        description="Comma-separated additional keys (rotation)"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== MATCHING ====================
    MATCH_HIGH_CONFIDENCE_SCORE: int = Field(
        default=75,
        description="Minimum score (with a strict lead) for a high-confidence sale match"
    )
    MATCH_MEDIUM_CONFIDENCE_SCORE: int = Field(
        default=50,
        description="Minimum score for a medium-confidence sale match"
    )
    MATCH_PREMIUM_TOLERANCE: float = Field(
        default=0.10,
        description="Relative premium difference still counted as a premium match"
    )

    # ==================== BACKFILL ====================
    BACKFILL_BATCH_SIZE: int = Field(
        default=500,
        description="Rows loaded per query while backfilling a source table"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Agency Identity Core API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list.

        Development also allows the local admin tooling origins.
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        dev_origins = [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]

        all_origins = set(origins)
        if not self.is_production:
            all_origins.update(dev_origins)

        return sorted(all_origins)

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.DATABASE_URL and not self.POSTGRES_HOST:
            errors.append("DATABASE_URL is required")

        if self.MATCH_MEDIUM_CONFIDENCE_SCORE > self.MATCH_HIGH_CONFIDENCE_SCORE:
            errors.append("MATCH_MEDIUM_CONFIDENCE_SCORE cannot exceed MATCH_HIGH_CONFIDENCE_SCORE")

        if self.is_production:
            if not self.INTERNAL_API_KEY and not self.INTERNAL_API_KEYS:
                errors.append("INTERNAL_API_KEY is required in production")

            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if "sqlite" in self.DATABASE_URL.lower():
                errors.append("DATABASE_URL cannot use SQLite in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors

    def get_database_url(self) -> str:
        """Get the appropriate database URL"""
        if self.DATABASE_URL:
            url = self.DATABASE_URL
            # Ensure the asyncpg driver is used for plain postgres URLs
            if url.startswith("postgresql://"):
                url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif url.startswith("postgres://"):
                url = url.replace("postgres://", "postgresql+asyncpg://", 1)
            return url

        if self.POSTGRES_HOST and self.POSTGRES_USER and self.POSTGRES_PASSWORD:
            ssl = f"?ssl={self.POSTGRES_SSLMODE}" if self.POSTGRES_SSLMODE else ""
            return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}{ssl}"

        raise ValueError("No database configuration found. Set DATABASE_URL or POSTGRES_* variables.")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "OPTIONS"],
        "allow_headers": [
            "Content-Type",
            "Accept",
            "Origin",
            "X-Request-ID",
            "X-Internal-Api-Key",
            "X-Service-Name",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate all required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    required_vars = [
        ("DATABASE_URL", settings.DATABASE_URL or settings.POSTGRES_HOST),
    ]

    for name, value in required_vars:
        if not value:
            status["errors"].append(f"{name} is required")
            status["valid"] = False
        else:
            status["variables"][name] = "✓ Set"

    optional_vars = [
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
        ("INTERNAL_API_KEY", settings.INTERNAL_API_KEY or settings.INTERNAL_API_KEYS, "Internal API endpoints will reject all calls"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    for error in settings.validate_production_config():
        if error not in status["errors"]:
            status["errors"].append(error)
            status["valid"] = False

    return status
