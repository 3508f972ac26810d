"""
Configuration for the version-control core.

Uses pydantic-settings for environment variable loading (prefix ``SDLC_``).

Invariants:
    - All settings have sensible defaults for tests and local use
    - The sqlite backend requires a data directory

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Extend check_consistency() for any cross-field rule
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import InvalidArgumentError

logger = logging.getLogger(__name__)


class StorageBackend(str, Enum):
    """Supported store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class LogFormat(str, Enum):
    JSON = "json"
    TEXT = "text"


class SdlcSettings(BaseSettings):
    """Core configuration loaded from environment."""

    # Storage
    storage_backend: StorageBackend = Field(
        default=StorageBackend.MEMORY, description="Store backend (memory or sqlite)"
    )
    data_dir: Optional[str] = Field(default=None, description="Directory for the SQLite database")
    sqlite_busy_timeout_ms: int = Field(default=5000, description="SQLite busy timeout")
    sqlite_wal_mode: bool = Field(default=True, description="Enable SQLite WAL journal mode")

    # Background work
    background_workers: int = Field(default=2, description="Background pool size")
    background_retry_delay_ms: int = Field(default=1000, description="Delay between task retries")
    background_max_retries: int = Field(default=3, description="Retries for retryable tasks")

    # Behaviour
    default_author: str = Field(default="system", description="Author used when none is given")
    revision_page_limit: int = Field(
        default=1000, description="Default cap on revisions returned by one listing"
    )

    # Observability
    log_level: str = Field(default="INFO", description="Root log level")
    log_format: LogFormat = Field(default=LogFormat.JSON, description="Log format (json or text)")

    model_config = {"env_prefix": "SDLC_"}

    @classmethod
    def from_env(cls) -> SdlcSettings:
        """Load and check settings from environment variables."""
        settings = cls()
        settings.check_consistency()
        return settings

    def check_consistency(self) -> None:
        """Validate configuration consistency.

        Raises:
            InvalidArgumentError: If configuration is invalid.
        """
        errors = []
        if self.storage_backend == StorageBackend.SQLITE and not self.data_dir:
            errors.append("SDLC_DATA_DIR is required when SDLC_STORAGE_BACKEND=sqlite")
        if self.background_workers < 1:
            errors.append(f"SDLC_BACKGROUND_WORKERS must be at least 1: {self.background_workers}")
        if self.background_max_retries < 0:
            errors.append(f"SDLC_BACKGROUND_MAX_RETRIES must not be negative: {self.background_max_retries}")
        if self.background_retry_delay_ms < 0:
            errors.append(
                f"SDLC_BACKGROUND_RETRY_DELAY_MS must not be negative: {self.background_retry_delay_ms}"
            )
        if self.revision_page_limit < 1:
            errors.append(f"SDLC_REVISION_PAGE_LIMIT must be at least 1: {self.revision_page_limit}")
        if logging.getLevelName(self.log_level.upper()) not in range(0, 51):
            errors.append(f"Unknown SDLC_LOG_LEVEL: {self.log_level}")
        if errors:
            raise InvalidArgumentError.from_errors(errors, "Invalid configuration")

        if self.data_dir and not os.path.exists(self.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.data_dir}. "
                "It will be created on first start."
            )

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Configuration loaded",
            extra={
                "storage_backend": self.storage_backend.value,
                "data_dir": self.data_dir,
                "background_workers": self.background_workers,
                "default_author": self.default_author,
                "log_level": self.log_level,
                "log_format": self.log_format.value,
            },
        )
