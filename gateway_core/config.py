"""
Configuration Management Module

This module handles loading, validating, and providing access to the gateway
configuration from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Usage:
    from gateway_core.config import settings

    print(settings.cache_ttl)
    print(settings.cors_origins_list)
"""

from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """
    Gateway Settings

    Values are automatically loaded from environment variables or .env file.

    Attributes:
        app_host: Host address for FastAPI server
        app_port: Port number for FastAPI server
        environment: Current environment (development, production)
        debug: Enable debug mode
        log_level: Root log level
        request_timeout: Timeout for upstream HTTP requests in seconds
        cache_ttl: Default cache time-to-live in seconds
        rate_limit_count: Default number of upstream requests per window
        rate_limit_delay: Default window length (seconds) for rate_limit_count
        log_fanout_failures: Log failed fan-out tasks by default
        cors_origins: Comma-separated allowed CORS origins
    """

    # ============================================
    # Application Configuration
    # ============================================

    app_host: str = Field(
        default="0.0.0.0",
        description="FastAPI server host address"
    )

    app_port: int = Field(
        default=8000,
        description="FastAPI server port"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # ============================================
    # Upstream Access
    # ============================================

    request_timeout: int = Field(
        default=30,
        description="Upstream HTTP request timeout in seconds"
    )

    rate_limit_count: int = Field(
        default=10,
        description="Default number of upstream requests allowed per rate_limit_delay seconds"
    )

    rate_limit_delay: float = Field(
        default=1,
        description="Default rate limit window in seconds"
    )

    # ============================================
    # Caching & Fan-out
    # ============================================

    cache_ttl: int = Field(
        default=60,
        description="Default cache TTL in seconds"
    )

    log_fanout_failures: bool = Field(
        default=True,
        description="Log failed fan-out tasks together with their context"
    )

    # ============================================
    # CORS Configuration
    # ============================================

    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Convert comma-separated CORS origins string to a list.

        Example:
            >>> settings.cors_origins_list
            ['http://localhost:3000', 'http://localhost:5173']
        """
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


settings = Settings()


def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Args:
        config: Settings to validate (defaults to the global settings)

    Raises:
        ValueError: If configuration is invalid
    """
    # logging.py imports config.py, so import lazily
    from gateway_core.logging import logger

    if config is None:
        config = settings

    if not (1 <= config.app_port <= 65535):
        raise ValueError(f"Invalid port number: {config.app_port}. Must be between 1 and 65535")

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    for name in ("request_timeout", "cache_ttl", "rate_limit_count", "rate_limit_delay"):
        value = getattr(config, name)
        if value <= 0:
            raise ValueError(f"{name.upper()} must be positive (got {value})")

    logger.info("Configuration validated successfully")
    logger.info(f"Server: {config.app_host}:{config.app_port}")
    logger.info(f"Log level: {config.log_level.upper()}")
    logger.info(f"Default cache TTL: {config.cache_ttl}s")
    logger.info(
        f"Default rate limit: {config.rate_limit_count} request(s) / {config.rate_limit_delay}s"
    )
