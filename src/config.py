"""
Configuration module for the Dummy operator.

Loads configuration from environment variables.
"""

import os
from dataclasses import dataclass
from typing import Optional

STORE_BACKENDS = ("kubernetes", "memory")


def _env_int(name: str, default: str) -> int:
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _env_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


@dataclass
class KubernetesConfig:
    """Resource store configuration."""

    backend: str = "kubernetes"
    kubeconfig: Optional[str] = None
    watch_namespace: Optional[str] = None  # None = all namespaces
    store_timeout: float = 30.0  # seconds per store call
    seed_file: Optional[str] = None  # YAML manifests for the memory backend

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        backend = os.getenv("STORE_BACKEND", "kubernetes").lower()
        if backend not in STORE_BACKENDS:
            raise ValueError(
                f"STORE_BACKEND must be one of {', '.join(STORE_BACKENDS)}, "
                f"got {backend!r}"
            )
        return cls(
            backend=backend,
            kubeconfig=os.getenv("KUBECONFIG") or None,
            watch_namespace=os.getenv("WATCH_NAMESPACE") or None,
            store_timeout=_env_float("STORE_TIMEOUT", "30"),
            seed_file=os.getenv("SEED_FILE") or None,
        )


@dataclass
class ControllerConfig:
    """Controller work queue and worker configuration."""

    max_concurrent_reconciles: int = 5
    resync_interval: int = 600  # seconds

    # Exponential backoff for failed reconciles
    backoff_base_delay: float = 1.0  # seconds
    backoff_max_delay: float = 600.0  # seconds
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    shutdown_grace_period: float = 10.0  # seconds

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_concurrent_reconciles=_env_int("MAX_CONCURRENT_RECONCILES", "5"),
            resync_interval=_env_int("RESYNC_INTERVAL", "600"),
            backoff_base_delay=_env_float("BACKOFF_BASE_DELAY", "1.0"),
            backoff_max_delay=_env_float("BACKOFF_MAX_DELAY", "600"),
            backoff_jitter_factor=_env_float("BACKOFF_JITTER_FACTOR", "0.1"),
            shutdown_grace_period=_env_float("SHUTDOWN_GRACE_PERIOD", "10"),
        )


@dataclass
class APIConfig:
    """Health and admin API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8081
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=_env_int("API_PORT", "8081"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


@dataclass
class Config:
    """Main configuration object."""

    kubernetes: KubernetesConfig
    controller: ControllerConfig
    api: APIConfig

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            kubernetes=KubernetesConfig.from_env(),
            controller=ControllerConfig.from_env(),
            api=APIConfig.from_env(),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            kubernetes=KubernetesConfig(),
            controller=ControllerConfig(),
            api=APIConfig(),
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
