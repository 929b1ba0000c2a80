"""
Configuration and settings management.

Uses Pydantic settings for environment-based configuration with
sensible defaults for interactive use. Every field can be overridden
with a ``DDTLCM_``-prefixed environment variable or a ``.env`` file.
"""

import logging
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Package settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DDTLCM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_format: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    # Progress Update Settings
    progress_update_interval_seconds: float = 1.0

    # Parallel chains
    max_chain_workers: int = 4

    # Model defaults
    default_total_iters: int = 5000
    default_c: float = 1.0
    default_pg_truncation: int = 200
    default_em_n_init: int = 10
    default_em_max_iter: int = 100


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for scripts and notebooks.

    Library modules only create loggers; call this once from the entry
    point that drives the sampler.

    Args:
        level: Logging level name. Defaults to ``Settings.log_level``.
    """
    settings = get_settings()
    logging.basicConfig(
        level=(level or settings.log_level).upper(),
        format=settings.log_format,
    )
