"""
Configuration module for the package manager.

Loads configuration from environment variables.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "package_manager"
    user: str = "operator"
    password: str = field(default="", repr=False)  # Never log password
    min_pool_size: int = 5
    max_pool_size: int = 20

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
            database=os.getenv("DB_NAME", "package_manager"),
            user=os.getenv("DB_USER", "operator"),
            password=password,
            min_pool_size=int(os.getenv("DB_MIN_POOL_SIZE", "5")),
            max_pool_size=int(os.getenv("DB_MAX_POOL_SIZE", "20")),
        )


@dataclass
class ControllerConfig:
    """Controller reconciliation loop configuration."""

    reconcile_interval: int = 60  # seconds between full resyncs
    max_concurrent_reconciles: int = 5
    reconcile_timeout: int = 180  # deadline for a single pass

    # Requeue delay for packages with pull policy Always
    pull_interval: int = 60
    # Requeue delay while a package's identity is still being resolved
    unpack_wait: int = 30

    # Exponential backoff configuration
    backoff_base_delay: int = 5  # base delay in seconds
    backoff_max_delay: int = 300  # max delay in seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            reconcile_interval=int(os.getenv("RECONCILE_INTERVAL", "60")),
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            reconcile_timeout=int(os.getenv("RECONCILE_TIMEOUT", "180")),
            pull_interval=int(os.getenv("PULL_INTERVAL", "60")),
            unpack_wait=int(os.getenv("UNPACK_WAIT", "30")),
            backoff_base_delay=int(os.getenv("BACKOFF_BASE_DELAY", "5")),
            backoff_max_delay=int(os.getenv("BACKOFF_MAX_DELAY", "300")),
            backoff_jitter_factor=float(os.getenv("BACKOFF_JITTER_FACTOR", "0.1")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


@dataclass
class RegistryConfig:
    """Image registry client configuration."""

    default_registry: str = "index.docker.io"
    timeout: int = 30
    # Pull secret name -> {"username": ..., "password": ...}
    credentials: Dict[str, Dict[str, str]] = field(default_factory=dict, repr=False)
    insecure_registries: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        credentials = {}
        if os.getenv("REGISTRY_CREDENTIALS"):
            try:
                credentials = json.loads(os.getenv("REGISTRY_CREDENTIALS"))
            except json.JSONDecodeError as e:
                raise ValueError(
                    f"REGISTRY_CREDENTIALS must be a JSON object: {e}"
                ) from e

        insecure = os.getenv("INSECURE_REGISTRIES", "")
        return cls(
            default_registry=os.getenv("DEFAULT_REGISTRY", "index.docker.io"),
            timeout=int(os.getenv("REGISTRY_TIMEOUT", "30")),
            credentials=credentials,
            insecure_registries=[r.strip() for r in insecure.split(",") if r.strip()],
        )


@dataclass
class Config:
    """Main configuration object."""

    database: DatabaseConfig
    controller: ControllerConfig
    registry: RegistryConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            controller=ControllerConfig.from_env(),
            registry=RegistryConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            database=DatabaseConfig(),
            controller=ControllerConfig(),
            registry=RegistryConfig(),
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
