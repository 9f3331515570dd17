"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no credentials in code)
"""

import os
from functools import lru_cache
from typing import Literal, cast
from urllib.parse import quote_plus
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()


class DatabaseConfig(BaseModel):
    """Relational store configuration."""

    url: str = Field(default="sqlite:///./heartlink.db", description="SQLAlchemy database URL")
    pool_size: int = Field(default=10, gt=0, description="Database connection pool size")
    max_overflow: int = Field(default=20, ge=0, description="Database connection pool overflow")
    pool_timeout: int = Field(default=30, gt=0, description="Database connection pool timeout")
    busy_timeout: float = Field(
        default=30.0, gt=0, description="Seconds a SQLite writer waits for the database lock"
    )
    echo: bool = Field(default=False, description="Log every SQL statement")
    create_schema: bool = Field(default=True, description="Create missing tables on startup")

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")


class SecurityConfig(BaseModel):
    """Credential hashing settings."""

    bcrypt_rounds: int = Field(
        default=10, ge=4, le=31, description="bcrypt work factor (log2 of iterations)"
    )


class AggregationConfig(BaseModel):
    """Heart-rate aggregation settings."""

    timezone: str = Field(default="UTC", description="IANA timezone defining the calendar day")
    default_recent_days: int = Field(
        default=7, gt=0, description="Default window for recent aggregates"
    )
    max_recent_days: int = Field(default=366, gt=0, description="Upper bound for recent aggregates")
    min_heart_rate: float = Field(default=0.0, ge=0.0, description="Exclusive lower bound in bpm")
    max_heart_rate: float = Field(default=300.0, gt=0.0, description="Inclusive upper bound in bpm")

    @field_validator("timezone")
    def validate_timezone(cls, v):
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    @model_validator(mode="after")
    def check_bounds(self) -> "AggregationConfig":
        if self.min_heart_rate >= self.max_heart_rate:
            raise ValueError("min_heart_rate must be lower than max_heart_rate")
        if self.default_recent_days > self.max_recent_days:
            raise ValueError("default_recent_days cannot exceed max_recent_days")
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=3000, gt=0, lt=65536, description="API server port")
    reload: bool = Field(default=False, description="Enable auto-reload for development")

    # Security settings
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["*"], description="Allowed origins for CORS"
    )
    viewer_header: str = Field(
        default="X-Viewer-Id", description="Header carrying the id of the account reading data"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def database_url_from_env() -> str:
    """Resolve the store URL.

    ``DATABASE_URL`` wins. Otherwise a MySQL URL is assembled from the
    ``DB_HOST``/``DB_PORT``/``DB_USER``/``DB_PASS``/``DB_NAME`` variables when
    ``DB_HOST`` is set, falling back to a local SQLite file.
    """
    url = os.getenv("DATABASE_URL")
    if url:
        return url

    host = os.getenv("DB_HOST")
    if not host:
        return "sqlite:///./heartlink.db"

    user = quote_plus(os.getenv("DB_USER", ""))
    password = quote_plus(os.getenv("DB_PASS", ""))
    port = os.getenv("DB_PORT", "3306")
    name = os.getenv("DB_NAME", "heartlink")
    credentials = f"{user}:{password}@" if user else ""
    return f"mysql+pymysql://{credentials}{host}:{port}/{name}"


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    database_config = DatabaseConfig(
        url=database_url_from_env(),
        echo=_parse_bool(os.getenv("DATABASE_ECHO"), False),
        create_schema=_parse_bool(os.getenv("DATABASE_CREATE_SCHEMA"), True),
        busy_timeout=float(os.getenv("DATABASE_BUSY_TIMEOUT", "30")),
    )

    security_config = SecurityConfig(
        bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", "10")),
    )

    aggregation_config = AggregationConfig(
        timezone=os.getenv("AGGREGATION_TIMEZONE", "UTC"),
        default_recent_days=int(os.getenv("AGGREGATION_RECENT_DAYS", "7")),
        max_recent_days=int(os.getenv("AGGREGATION_MAX_RECENT_DAYS", "366")),
    )

    # PORT is what the hosting platform sets; API_PORT overrides it locally
    api_config = APIConfig(
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", os.getenv("PORT", "3000"))),
        reload=_parse_bool(os.getenv("API_RELOAD"), debug),
        allowed_origins=os.getenv("API_ALLOWED_ORIGINS", "*").split(","),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        database=database_config,
        security=security_config,
        aggregation=aggregation_config,
        api=api_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()
