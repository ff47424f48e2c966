"""
Configuration module for the converge controller.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from client import DEFAULT_ENDPOINT


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "converge"
    user: str = "converge"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 2
    max_pool_size: int = 10

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        password = os.getenv("DB_PASSWORD", "")
        if not password:
            raise ValueError(
                "DB_PASSWORD environment variable must be set. "
                "Database password cannot be empty."
            )

        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "converge"),
            user=os.getenv("DB_USER", "converge"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "2")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "10")),
        )


@dataclass
class APIConfig:
    """Control-plane API configuration."""

    url: str = DEFAULT_ENDPOINT
    token: str = field(default="", repr=False)  # Never log token
    timeout: int = 30  # seconds, per HTTP request
    redeploy_on_change: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        token = os.getenv("CONTROL_PLANE_TOKEN", "")
        if not token:
            raise ValueError(
                "CONTROL_PLANE_TOKEN environment variable must be set. "
                "API token cannot be empty."
            )

        return cls(
            url=os.getenv("CONTROL_PLANE_URL", DEFAULT_ENDPOINT),
            token=token,
            timeout=int(os.getenv("API_TIMEOUT", "30")),
            redeploy_on_change=_env_bool("REDEPLOY_ON_CHANGE"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class ControllerConfig:
    """Reconciliation configuration."""

    max_concurrent_reconciles: int = 5
    call_timeout: Optional[float] = 60.0  # seconds, per remote call

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        call_timeout = os.getenv("CALL_TIMEOUT", "60")
        return cls(
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            # 0 disables the per-call timeout
            call_timeout=float(call_timeout) if float(call_timeout) > 0 else None,
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    api: APIConfig
    controller: ControllerConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            api=APIConfig.from_env(),
            controller=ControllerConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            api=APIConfig(),
            controller=ControllerConfig(),
        )


# Global config instance
config: Optional[Config] = None


def load_config() -> Config:
    """Load configuration (singleton pattern)."""
    global config
    if config is None:
        config = Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
