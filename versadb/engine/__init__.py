"""
Host storage engine for versadb.

A versioned, transactional key-value store with secondary indexes:
- Databases are opened at a version; raising the version runs an
  upgrade callback inside an exclusive transaction
- Containers hold records under auto-incrementing integer keys
- Indexes map one record field to record keys, optionally unique
- Cursors walk records forward and can update or delete in place

Invariants:
    - Structural edits happen only in version change transactions
    - A failed transaction leaves no partial writes
    - The engine never holds a connection between open() and close()

How to change safely:
    - The core only uses what is exported here; keep these names stable
    - Run the engine tests against populated databases
"""

from .base import (
    AbortError,
    BlockedError,
    ConstraintError,
    ContainerNotFound,
    DataError,
    EngineFailure,
    EngineUnavailable,
    IndexInfo,
    IndexNotFound,
    InvalidStateError,
    KeyRange,
    TransactionMode,
    VersionError,
    encode_index_key,
)
from .sqlite import (
    ContainerHandle,
    Cursor,
    EngineConnection,
    HostError,
    IndexHandle,
    SqliteEngine,
    Transaction,
)

__all__ = [
    # Types
    "IndexInfo",
    "KeyRange",
    "TransactionMode",
    "encode_index_key",
    # Errors
    "EngineFailure",
    "EngineUnavailable",
    "BlockedError",
    "VersionError",
    "AbortError",
    "ConstraintError",
    "ContainerNotFound",
    "IndexNotFound",
    "InvalidStateError",
    "DataError",
    # Implementation
    "SqliteEngine",
    "EngineConnection",
    "HostError",
    "Transaction",
    "ContainerHandle",
    "IndexHandle",
    "Cursor",
]
