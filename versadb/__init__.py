"""
versadb - Versioned container store with secondary indexes.

This package wraps an embedded, versioned key-value engine (SQLite) with:
- A schema migrator that turns every structural change into exactly one
  version bump, including index renames that rewrite the stored records
- A record store for inserts, index lookups, scans, updates and deletes
- A last-modified marker kept inside each database
- An HTTP API and a command line tool over the same operations

Example:
    >>> from versadb import Database
    >>>
    >>> async with Database("app") as db:
    ...     await db.create_container("users", [{"name": "email", "unique": True}])
    ...     await db.insert("users", {"email": "a@example.com"})
    ...     await db.update_container_structure(
    ...         "users", rename=[{"old_name": "email", "new_name": "mail"}]
    ...     )

Invariants:
    - Structural changes happen only inside the engine's upgrade transaction
    - CRUD never changes the database version
    - Record keys are never exposed by selects and never reused

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import Database
from .config import Settings, setup_logging
from .core import ContainerStatus, InitStatus
from .errors import (
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

__all__ = [
    # Version
    "__version__",
    # Client
    "Database",
    "ContainerStatus",
    "InitStatus",
    # Config
    "Settings",
    "setup_logging",
    # Errors
    "VersaDbError",
    "InvalidArgumentError",
    "UnsupportedEnvironmentError",
    "ConnectionBlockedError",
    "DatabaseNotFoundError",
    "NoSuchContainerError",
    "NoSuchIndexError",
    "ConstraintViolationError",
    "EngineError",
    "SchemaUpdateError",
]
