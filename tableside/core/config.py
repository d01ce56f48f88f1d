"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports three modes:
    - DEVELOPMENT: In-process event broker, SQLite database
    - STAGING / PRODUCTION: Redis pub/sub event broker, PostgreSQL database

The ENV_MODE variable controls which services are instantiated throughout
the server, so a single API process can be tested locally without Redis
and scaled out to several workers sharing one event stream in production.

The client half reads its own ClientSettings (prefix TABLESIDE_) so a
kitchen display or waiter panel can be pointed at any server.

Usage:
    from tableside.core.config import get_settings

    settings = get_settings()
    if settings.use_redis_events:
        ...
"""

import logging
import sys
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local single-process server, in-memory event broker
        PRODUCTION: Live environment with Redis fan-out
        STAGING: Pre-production, same services as production
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Server settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.

    Attributes:
        env_mode: Current environment (development/production/staging)
        debug: Enable verbose logging and error details

        # API Configuration
        api_host: Host to bind the API server
        api_port: Port for the API server

        # Database
        database_url: SQLAlchemy async connection string

        # Realtime
        redis_url: Redis connection string for event fan-out
        events_channel: Pub/sub channel carrying realtime events

        # Query limits
        orders_default_limit / orders_max_limit: Order list caps
        bills_default_limit / bills_max_limit: Bill list caps
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Tableside Ordering",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8001,
        description="API server port"
    )

    # ==========================================================================
    # DATABASE
    # ==========================================================================

    database_url: str = Field(
        default="sqlite+aiosqlite:///./tableside.db",
        description="SQLAlchemy async connection URL "
                    "(postgresql+psycopg://... in production)"
    )
    database_echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )

    # ==========================================================================
    # REDIS / REALTIME
    # ==========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )
    events_channel: str = Field(
        default="tableside:events",
        description="Pub/sub channel for realtime order and bill events"
    )
    ws_max_message_size: int = Field(
        default=4096,
        description="Largest inbound websocket frame accepted from a client"
    )

    # ==========================================================================
    # BUSINESS CONFIGURATION
    # ==========================================================================

    restaurant_name: str = Field(
        default="Tableside Kitchen",
        description="Restaurant display name"
    )
    orders_default_limit: int = Field(
        default=50,
        description="Orders returned when no limit is requested"
    )
    orders_max_limit: int = Field(
        default=500,
        description="Upper bound for the order list limit"
    )
    bills_default_limit: int = Field(
        default=100,
        description="Bills returned when no limit is requested"
    )
    bills_max_limit: int = Field(
        default=500,
        description="Upper bound for the bill list limit"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def use_redis_events(self) -> bool:
        """Check if realtime events should fan out through Redis."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that production settings are not left at development defaults.

        Returns:
            List of suspicious configuration keys (empty if all good)
        """
        problems = []

        if self.use_redis_events:
            if self.is_sqlite:
                problems.append("DATABASE_URL")
            if "localhost" in self.redis_url:
                problems.append("REDIS_URL")

        return problems


class ClientSettings(BaseSettings):
    """
    Settings for the client synchronisation core.

    Read from TABLESIDE_* environment variables so each screen (kitchen,
    waiter, admin, customer kiosk) can be pointed at its server.
    """

    model_config = SettingsConfigDict(
        env_prefix="TABLESIDE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = Field(
        default="http://localhost:8001",
        description="Base URL of the order API"
    )
    ws_url: str = Field(
        default="ws://localhost:8001/ws",
        description="Realtime websocket URL"
    )
    request_timeout: float = Field(
        default=10.0,
        description="Seconds before an API request is abandoned"
    )
    reconnect_delay: float = Field(
        default=1.0,
        description="First delay before reconnecting the realtime channel"
    )
    reconnect_max_delay: float = Field(
        default=30.0,
        description="Upper bound for the reconnect backoff"
    )
    cache_dir: Optional[str] = Field(
        default=None,
        description="Directory for the durable cache (memory only when unset)"
    )
    cache_lock_timeout: float = Field(
        default=5.0,
        description="Seconds to wait for the cache directory lock"
    )
    orders_fetch_limit: int = Field(
        default=200,
        description="Orders requested on a full refresh"
    )
    bills_fetch_limit: int = Field(
        default=100,
        description="Bills requested on a full refresh"
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are loaded only once,
    and are consistent across the application lifecycle.

    Returns:
        Settings: Configured application settings
    """
    return Settings()


@lru_cache()
def get_client_settings() -> ClientSettings:
    """Get cached client settings."""
    return ClientSettings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    # Set level based on debug mode
    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-30s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("websockets").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return logging.getLogger("tableside")

