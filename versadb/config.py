"""
Configuration management for versadb.

Settings come from environment variables prefixed with ``VERSADB_`` and
can be overridden by keyword arguments. The library never reads config
files.

Invariants:
    - All settings have sensible defaults for local development
    - An invalid timezone never stops the store from working; it only
      disables the last-modified marker until fixed

How to change safely:
    - Add new settings with defaults that keep current behaviour
    - Document new settings in DESIGN.md
"""

from __future__ import annotations

import logging

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .engine import SqliteEngine

logger = logging.getLogger(__name__)

DEFAULT_MARKER_CONTAINER = "__last_modified__"


class Settings(BaseSettings):
    """versadb configuration."""

    # Storage
    data_dir: str = Field(default="./versadb-data")
    busy_timeout_ms: int = Field(default=5000, ge=0)
    wal_mode: bool = Field(default=True)

    # Last-modified marker
    timezone: str = Field(default="UTC", description="IANA timezone for the marker timestamp")
    marker_container: str = Field(default=DEFAULT_MARKER_CONTAINER, min_length=1)

    # HTTP API
    http_host: str = Field(default="127.0.0.1")
    http_port: int = Field(default=8081)

    # Observability
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="'text' or 'json'")

    model_config = SettingsConfigDict(env_prefix="VERSADB_")

    def create_engine(self) -> SqliteEngine:
        """Build the storage engine described by these settings."""
        return SqliteEngine(
            self.data_dir,
            wal_mode=self.wal_mode,
            busy_timeout_ms=self.busy_timeout_ms,
        )


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings.

    Args:
        settings: versadb settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
