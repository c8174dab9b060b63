# fee_engine/core/config.py - Centralized settings management using Pydantic
from decimal import ROUND_HALF_UP, ROUND_HALF_EVEN, ROUND_DOWN, ROUND_UP, ROUND_CEILING, ROUND_FLOOR
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from typing import List, Optional

ROUNDING_MODES = {
    "ROUND_HALF_UP": ROUND_HALF_UP,
    "ROUND_HALF_EVEN": ROUND_HALF_EVEN,
    "ROUND_DOWN": ROUND_DOWN,
    "ROUND_UP": ROUND_UP,
    "ROUND_CEILING": ROUND_CEILING,
    "ROUND_FLOOR": ROUND_FLOOR,
}


class Settings(BaseSettings):
    """Application settings with validation and type safety"""

    # Application Environment
    ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_TITLE: str = Field(default="School Fee Engine", description="API title")
    API_VERSION: str = Field(default="1.0.0", description="API version")

    # Database Configuration
    DATABASE_URL: str = Field(..., description="Database connection URL")
    DATABASE_ECHO: bool = Field(default=False, description="Echo SQL queries")
    DATABASE_POOL_SIZE: int = Field(default=5, ge=1, le=100, description="Connection pool size")
    DATABASE_MAX_OVERFLOW: int = Field(default=10, ge=0, le=100, description="Max overflow connections")
    DATABASE_POOL_TIMEOUT: int = Field(default=30, ge=1, le=300, description="Pool timeout in seconds")
    DATABASE_POOL_RECYCLE: int = Field(default=3600, ge=300, description="Pool recycle time in seconds")

    # CORS Configuration
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="CORS allowed origins"
    )

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log record format"
    )

    # Fee computation
    FEE_TERMS_PER_YEAR: int = Field(default=3, ge=1, le=12, description="Terms per academic year used to prorate TERM items")
    FEE_MONEY_DECIMAL_PLACES: int = Field(default=2, ge=0, le=6, description="Decimal places of persisted amounts")
    FEE_ROUNDING_MODE: str = Field(default="ROUND_HALF_UP", description="Rounding mode applied when persisting amounts")
    FEE_LEDGER_APPEND_RETRIES: int = Field(default=3, ge=1, le=10, description="Retries when a ledger version number collides")

    # Pagination
    FEE_HISTORY_PAGE_SIZE: int = Field(default=20, ge=1, le=500, description="Default page size for student history")
    FEE_BULK_PAGE_SIZE: int = Field(default=50, ge=1, le=500, description="Default page size for bulk month listings")
    FEE_MAX_PAGE_SIZE: int = Field(default=200, ge=1, le=1000, description="Upper bound on requested page sizes")

    # Development Settings
    DEV_LOG_SQL: bool = Field(default=False, description="Log SQL queries in development")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"  # Ignore extra environment variables

    @field_validator("ENV")
    @classmethod
    def validate_environment(cls, v):
        allowed_envs = ["dev", "development", "test", "staging", "prod", "production"]
        if v.lower() not in allowed_envs:
            raise ValueError(f"ENV must be one of: {allowed_envs}")
        return v.lower()

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        # Accept postgresql, postgresql+psycopg2 (legacy), postgresql+psycopg (psycopg3), sqlite
        allowed_prefixes = (
            "postgresql://",
            "postgresql+psycopg2://",
            "postgresql+psycopg://",
            "sqlite:///",
        )
        if not v.startswith(allowed_prefixes):
            raise ValueError("DATABASE_URL must be a valid database connection string (postgresql, postgresql+psycopg, postgresql+psycopg2, or sqlite)")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed_levels}")
        return v.upper()

    @field_validator("FEE_ROUNDING_MODE")
    @classmethod
    def validate_rounding_mode(cls, v):
        if v.upper() not in ROUNDING_MODES:
            raise ValueError(f"FEE_ROUNDING_MODE must be one of: {sorted(ROUNDING_MODES)}")
        return v.upper()

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            # Handle comma-separated string
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.ENV in ["dev", "development", "test"]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.ENV in ["prod", "production"]

    @property
    def rounding(self) -> str:
        """Decimal rounding constant for FEE_ROUNDING_MODE"""
        return ROUNDING_MODES[self.FEE_ROUNDING_MODE]

    def get_cors_config(self) -> dict:
        """Get CORS configuration for FastAPI"""
        return {
            "allow_origins": self.CORS_ORIGINS,
            "allow_credentials": True,
            "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            "allow_headers": ["*"],
        }


# Create settings instance with validation
try:
    settings = Settings()
except Exception as e:
    print(f"Configuration error: {e}")
    print("Please check your .env file and environment variables")
    raise


def validate_critical_settings():
    """Validate critical settings that must be present"""
    critical_errors = []

    if not settings.DATABASE_URL:
        critical_errors.append("DATABASE_URL is required")

    if settings.is_production and settings.DATABASE_URL.startswith("sqlite"):
        critical_errors.append("SQLite is not supported in production; the ledger relies on PostgreSQL advisory locks")

    if critical_errors:
        error_msg = "Critical configuration errors:\n" + "\n".join(f"  - {error}" for error in critical_errors)
        raise ValueError(error_msg)


# Validate on import
validate_critical_settings()

__all__ = ["settings", "Settings", "ROUNDING_MODES"]
