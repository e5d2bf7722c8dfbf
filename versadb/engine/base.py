"""
Base types and errors for the host storage engine.

The engine is the versioned key-value store the core layer is built on.
It offers exactly these primitives:
- open(name, version) with an upgrade hook for version changes
- container create/delete/list (upgrade transactions only)
- index create/delete/list (upgrade transactions only)
- record add/put/get/get_all/delete/clear
- forward cursors with in-place update/delete
- transaction commit/abort

Invariants:
    - A database version only ever grows
    - Structural edits are only possible inside an upgrade transaction
    - Every engine failure is an EngineFailure subclass

How to change safely:
    - Keep the primitive set small; the core must not need more
    - New error kinds must subclass EngineFailure so the core can map them
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EngineFailure(Exception):
    """Base exception for host engine failures."""

    pass


class EngineUnavailable(EngineFailure):
    """The runtime lacks a capability the engine needs."""

    pass


class BlockedError(EngineFailure):
    """A version change was requested while other connections are open."""

    pass


class VersionError(EngineFailure):
    """Requested version is lower than the stored version."""

    pass


class AbortError(EngineFailure):
    """The transaction was aborted by its owner."""

    pass


class ConstraintError(EngineFailure):
    """A unique index rejected a value, or a key already exists."""

    pass


class ContainerNotFound(EngineFailure):
    """The named container does not exist."""

    def __init__(self, container: str) -> None:
        super().__init__(f"Container '{container}' does not exist")
        self.container = container


class IndexNotFound(EngineFailure):
    """The named index does not exist on the container."""

    def __init__(self, container: str, index: str) -> None:
        super().__init__(f"Index '{index}' was not found in container '{container}'")
        self.container = container
        self.index = index


class InvalidStateError(EngineFailure):
    """Operation is not allowed in the current transaction state."""

    pass


class DataError(EngineFailure):
    """A value or key cannot be stored or used as a key."""

    pass


class TransactionMode(Enum):
    """Transaction access modes."""

    READONLY = "readonly"
    READWRITE = "readwrite"
    VERSIONCHANGE = "versionchange"


@dataclass(frozen=True)
class IndexInfo:
    """Definition of a secondary index.

    Attributes:
        name: Index name, unique within the container
        key_path: Record field the index reads its value from
        unique: Whether two records may share a value
    """

    name: str
    key_path: str
    unique: bool = False


@dataclass(frozen=True)
class KeyRange:
    """Bounds on record keys for a cursor.

    Attributes:
        lower: Lowest key, or None for unbounded
        upper: Highest key, or None for unbounded
        lower_open: Exclude the lower bound itself
        upper_open: Exclude the upper bound itself
    """

    lower: int | None = None
    upper: int | None = None
    lower_open: bool = False
    upper_open: bool = False

    @classmethod
    def only(cls, key: int) -> KeyRange:
        return cls(lower=key, upper=key)

    def to_sql(self) -> tuple[str, list[Any]]:
        """Render as an SQL predicate on the ``key`` column."""
        clauses: list[str] = []
        params: list[Any] = []
        if self.lower is not None:
            clauses.append("key > ?" if self.lower_open else "key >= ?")
            params.append(self.lower)
        if self.upper is not None:
            clauses.append("key < ?" if self.upper_open else "key <= ?")
            params.append(self.upper)
        return " AND ".join(clauses), params


def encode_index_key(value: Any) -> str | None:
    """Encode a field value as an index key.

    Returns None for values that are not valid index keys (None, booleans
    and mappings); records holding such values are left out of the index.
    Integral floats encode like the matching int so 1 and 1.0 collide.
    """
    if value is None or isinstance(value, (bool, dict)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, (list, tuple)):
        parts = [encode_index_key(v) for v in value]
        if any(p is None for p in parts):
            return None
        return "[" + ",".join(parts) + "]"  # type: ignore[arg-type]
    try:
        return json.dumps(value, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        return None
