"""
Shared configuration management for the sentiment data loader.
"""

from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="DATALOADER_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Observability
    enable_metrics: bool = Field(default=False)
    metrics_port: Optional[int] = Field(default=None, gt=0)


class LoaderConfig(BaseConfig):
    """Loader engine defaults, applied when a call leaves an option unset."""

    service_name: str = "dataloader"

    # Retry policy
    default_retries: int = Field(default=0, ge=0)
    default_retry_delay: float = Field(default=1.0, ge=0.0)
    backoff_strategy: Literal["fixed", "linear", "exponential"] = "exponential"
    exponential_base: float = Field(default=2.0, ge=1.0)
    max_retry_delay: float = Field(default=30.0, ge=0.0)
    retry_jitter: bool = False

    # Per-attempt timeout in seconds; None disables it
    default_timeout: Optional[float] = Field(default=None, gt=0.0)

    # Cache
    default_cache_ttl: Optional[float] = Field(default=None, gt=0.0)
    max_cache_size: int = Field(default=100 * 1024 * 1024, gt=0)
    cleanup_interval: float = Field(default=60.0, gt=0.0)

    # Progress heuristic
    expected_load_duration: float = Field(default=1.0, gt=0.0)


def get_loader_config(**overrides) -> LoaderConfig:
    """Get loader configuration, environment first, then explicit overrides."""
    return LoaderConfig(**overrides)
