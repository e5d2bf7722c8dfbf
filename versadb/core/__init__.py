"""
Core components of versadb.

- connection: per-operation connections and engine error translation
- migrator: versioned structural changes (containers, indexes, renames)
- transform: pure record transformations used by migrations
- tracker: last-modified marker
- records: CRUD and index queries
- validate: argument validation
"""

from .connection import ConnectionManager, translate_engine_error
from .migrator import ContainerStatus, InitStatus, SchemaMigrator
from .records import RecordStore
from .tracker import ModificationTracker
from .transform import project, rename_fields

__all__ = [
    "ConnectionManager",
    "translate_engine_error",
    "SchemaMigrator",
    "ContainerStatus",
    "InitStatus",
    "RecordStore",
    "ModificationTracker",
    "rename_fields",
    "project",
]
