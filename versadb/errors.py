"""
Error types for versadb.

This module defines every exception raised by the public API:
- VersaDbError: Base exception
- InvalidArgumentError: Bad argument type, shape or empty name
- UnsupportedEnvironmentError: Storage capability missing
- ConnectionBlockedError: Open connections prevent a version change
- DatabaseNotFoundError / NoSuchContainerError / NoSuchIndexError
- ConstraintViolationError: Unique index collision
- EngineError: Any other storage engine failure
- SchemaUpdateError: A structural change failed and was rolled back

Invariants:
    - All errors inherit from VersaDbError
    - Every error carries a stable code for programmatic handling
    - InvalidArgumentError is raised before any transaction is opened
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class VersaDbError(Exception):
    """Base exception for all versadb errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    retriable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "VERSADB_ERROR"
        self.details = details or {}


class InvalidArgumentError(VersaDbError):
    """An argument has the wrong type or shape.

    Raised when:
    - A name is not a string or is blank
    - A record is not a mapping
    - A list argument holds malformed entries
    """

    def __init__(
        self,
        message: str,
        argument: Optional[str] = None,
        errors: Optional[List[str]] = None,
    ) -> None:
        super().__init__(
            message,
            code="INVALID_ARGUMENT",
            details={"argument": argument, "errors": errors or []},
        )
        self.argument = argument
        self.errors = errors or []


class UnsupportedEnvironmentError(VersaDbError):
    """The runtime lacks the storage capability versadb needs."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="UNSUPPORTED_ENVIRONMENT")


class ConnectionBlockedError(VersaDbError):
    """Another open connection prevents a version change.

    The structural change was not applied; retry once the other
    connections have been released.
    """

    retriable = True

    def __init__(self, message: str, database: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONNECTION_BLOCKED",
            details={"database": database},
        )
        self.database = database


class DatabaseNotFoundError(VersaDbError):
    """The database has never been initialized."""

    def __init__(self, database: str) -> None:
        super().__init__(
            f"Database '{database}' has not been initialized and/or does not exist",
            code="DATABASE_NOT_FOUND",
            details={"database": database},
        )
        self.database = database


class NoSuchContainerError(VersaDbError):
    """The container is not declared in the database."""

    def __init__(self, container: str) -> None:
        super().__init__(
            f"Container '{container}' does not exist",
            code="NO_SUCH_CONTAINER",
            details={"container": container},
        )
        self.container = container


class NoSuchIndexError(VersaDbError):
    """The index is not declared on the container."""

    def __init__(self, container: str, index: str) -> None:
        super().__init__(
            f"The index '{index}' was not found in container '{container}'",
            code="NO_SUCH_INDEX",
            details={"container": container, "index": index},
        )
        self.container = container
        self.index = index


class ConstraintViolationError(VersaDbError):
    """A unique index rejected a value."""

    def __init__(self, message: str, container: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="CONSTRAINT_VIOLATION",
            details={"container": container},
        )
        self.container = container


class EngineError(VersaDbError):
    """The storage engine reported a failure.

    Attributes:
        engine_message: Message reported by the engine
    """

    def __init__(self, engine_message: str, operation: Optional[str] = None) -> None:
        message = f"{operation} failed: {engine_message}" if operation else engine_message
        super().__init__(
            message,
            code="ENGINE_ERROR",
            details={"operation": operation},
        )
        self.engine_message = engine_message
        self.operation = operation


class SchemaUpdateError(VersaDbError):
    """A structural change failed.

    Schema and data are left as they were before the call.
    """

    def __init__(self, message: str, container: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="SCHEMA_UPDATE_FAILED",
            details={"container": container},
        )
        self.container = container
