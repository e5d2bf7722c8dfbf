"""
Unit tests for settings and the error taxonomy.

Tests cover:
- Defaults and VERSADB_ environment overrides
- Engine construction from settings
- Error codes and details
"""

import pytest

from versadb.config import Settings
from versadb.engine import SqliteEngine
from versadb.errors import (
    ConnectionBlockedError,
    ConstraintViolationError,
    DatabaseNotFoundError,
    EngineError,
    InvalidArgumentError,
    NoSuchContainerError,
    NoSuchIndexError,
    SchemaUpdateError,
    UnsupportedEnvironmentError,
    VersaDbError,
)


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("VERSADB_TIMEZONE", raising=False)
        settings = Settings()
        assert settings.timezone == "UTC"
        assert settings.marker_container == "__last_modified__"
        assert settings.http_port == 8081

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("VERSADB_DATA_DIR", "/tmp/versadb-test")
        monkeypatch.setenv("VERSADB_TIMEZONE", "Europe/Lisbon")
        monkeypatch.setenv("VERSADB_WAL_MODE", "false")
        settings = Settings()
        assert settings.data_dir == "/tmp/versadb-test"
        assert settings.timezone == "Europe/Lisbon"
        assert settings.wal_mode is False

    def test_create_engine(self, tmp_path):
        engine = Settings(data_dir=str(tmp_path), wal_mode=False).create_engine()
        assert isinstance(engine, SqliteEngine)
        assert engine.data_dir == tmp_path
        assert engine.wal_mode is False


class TestErrors:
    """Tests for the error taxonomy."""

    @pytest.mark.parametrize(
        "error,code",
        [
            (InvalidArgumentError("bad", "name"), "INVALID_ARGUMENT"),
            (UnsupportedEnvironmentError("no storage"), "UNSUPPORTED_ENVIRONMENT"),
            (ConnectionBlockedError("blocked", "app"), "CONNECTION_BLOCKED"),
            (DatabaseNotFoundError("app"), "DATABASE_NOT_FOUND"),
            (NoSuchContainerError("users"), "NO_SUCH_CONTAINER"),
            (NoSuchIndexError("users", "email"), "NO_SUCH_INDEX"),
            (ConstraintViolationError("dup"), "CONSTRAINT_VIOLATION"),
            (EngineError("disk I/O error", "insert"), "ENGINE_ERROR"),
            (SchemaUpdateError("failed", "users"), "SCHEMA_UPDATE_FAILED"),
        ],
    )
    def test_codes(self, error, code):
        assert isinstance(error, VersaDbError)
        assert error.code == code

    def test_only_blocked_is_retriable(self):
        assert ConnectionBlockedError("blocked").retriable is True
        assert NoSuchContainerError("users").retriable is False

    def test_details(self):
        error = NoSuchIndexError("users", "email")
        assert error.details == {"container": "users", "index": "email"}
        assert "email" in error.message

    def test_engine_error_keeps_host_message(self):
        error = EngineError("disk I/O error", "insert")
        assert error.engine_message == "disk I/O error"
        assert str(error) == "insert failed: disk I/O error"
