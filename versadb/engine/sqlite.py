"""
SQLite-backed host storage engine for versadb.

Each database is one SQLite file holding a small catalog plus the records
of every container:

    _meta:
        - key TEXT PRIMARY KEY ('version', 'name')
        - value TEXT

    _containers:
        - name TEXT PRIMARY KEY
        - auto_increment INTEGER
        - next_key INTEGER (key generator, never reused)

    _indexes:
        - container TEXT
        - name TEXT
        - key_path TEXT
        - is_unique INTEGER
        - PRIMARY KEY (container, name)

    _records:
        - container TEXT
        - key INTEGER
        - value_json TEXT
        - PRIMARY KEY (container, key)

    _index_entries:
        - container TEXT
        - index_name TEXT
        - value_key TEXT (see encode_index_key)
        - record_key INTEGER
        - is_unique INTEGER
        - PARTIAL UNIQUE on (container, index_name, value_key) WHERE is_unique = 1

Invariants:
    - The stored version only changes inside BEGIN EXCLUSIVE
    - Index entries are written in the same transaction as their record
    - A version change is refused while other connections to the same
      database are open in this engine
    - Connections are never shared between threads

How to change safely:
    - Catalog changes must keep existing files readable
    - Keep index maintenance next to every record write
    - Test uniqueness with populated containers, not just empty ones
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
from collections import defaultdict
from collections.abc import Callable, Iterator, Mapping, Sequence
from pathlib import Path
from typing import Any

from .base import (
    AbortError,
    BlockedError,
    ConstraintError,
    ContainerNotFound,
    DataError,
    EngineUnavailable,
    IndexInfo,
    IndexNotFound,
    InvalidStateError,
    KeyRange,
    TransactionMode,
    VersionError,
    encode_index_key,
)

logger = logging.getLogger(__name__)

# Partial indexes are needed for per-index uniqueness
MIN_SQLITE_VERSION = (3, 8, 0)

# Raw SQLite failures that escape the engine
HostError = sqlite3.Error

UpgradeCallback = Callable[["EngineConnection", "Transaction", int, int], None]

_CATALOG = """
    CREATE TABLE IF NOT EXISTS _meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS _containers (
        name TEXT PRIMARY KEY,
        auto_increment INTEGER NOT NULL DEFAULT 1,
        next_key INTEGER NOT NULL DEFAULT 1
    );

    CREATE TABLE IF NOT EXISTS _indexes (
        container TEXT NOT NULL,
        name TEXT NOT NULL,
        key_path TEXT NOT NULL,
        is_unique INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (container, name)
    );

    CREATE TABLE IF NOT EXISTS _records (
        container TEXT NOT NULL,
        key INTEGER NOT NULL,
        value_json TEXT NOT NULL,
        PRIMARY KEY (container, key)
    );

    CREATE TABLE IF NOT EXISTS _index_entries (
        container TEXT NOT NULL,
        index_name TEXT NOT NULL,
        value_key TEXT NOT NULL,
        record_key INTEGER NOT NULL,
        is_unique INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (container, index_name, value_key, record_key)
    );

    CREATE UNIQUE INDEX IF NOT EXISTS ux_index_entries_unique
        ON _index_entries(container, index_name, value_key)
        WHERE is_unique = 1;

    CREATE INDEX IF NOT EXISTS idx_index_entries_record
        ON _index_entries(container, record_key);
"""


def _decode(value_json: str) -> dict[str, Any]:
    return json.loads(value_json)


def _encode(value: Any) -> str:
    if not isinstance(value, Mapping):
        raise DataError("Records must be mappings of field name to value")
    try:
        return json.dumps(dict(value))
    except (TypeError, ValueError) as e:
        raise DataError(f"Record could not be serialized: {e}") from e


class SqliteEngine:
    """Versioned key-value engine with secondary indexes, stored in SQLite.

    One SQLite file per database lives in ``data_dir``. The engine itself
    holds no open handles; it only counts the connections it has handed out
    so a version change can be refused while others are open.

    Thread safety:
        Connections are created per open() call and must be used and closed
        on the thread that opened them. The bookkeeping of open connections
        is guarded by a lock.

    Example:
        >>> engine = SqliteEngine("/var/lib/versadb")
        >>> conn = engine.open("app", 2, on_upgrade=create_stores)
        >>> with conn.transaction("users", TransactionMode.READWRITE) as tx:
        ...     tx.container("users").add({"email": "a@example.com"})
        >>> conn.close()
    """

    def __init__(
        self,
        data_dir: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the engine.

        Args:
            data_dir: Directory for SQLite database files
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._open_counts: dict[str, int] = defaultdict(int)
        self._lock = threading.Lock()

    @staticmethod
    def check_environment() -> None:
        """Raise EngineUnavailable if the SQLite runtime is too old."""
        if sqlite3.sqlite_version_info < MIN_SQLITE_VERSION:
            required = ".".join(str(p) for p in MIN_SQLITE_VERSION)
            raise EngineUnavailable(
                f"SQLite {sqlite3.sqlite_version} is too old, {required} or newer is required"
            )

    def _get_db_path(self, name: str) -> Path:
        """Get database file path for a database name."""
        safe = "".join(c for c in name if c.isalnum() or c in "-_.")
        if safe != name or not safe:
            # Keep distinct names distinct after sanitizing
            safe = f"{safe}-{hashlib.sha1(name.encode('utf-8')).hexdigest()[:10]}"
        return self.data_dir / f"{safe}.db"

    def _connect(self, path: Path) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        try:
            conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
        except Exception:
            conn.close()
            raise
        return conn

    def exists(self, name: str) -> bool:
        """Check whether a database has been created."""
        return self._get_db_path(name).exists()

    def databases(self) -> list[str]:
        """List the names of all databases in the data directory."""
        if not self.data_dir.exists():
            return []
        names = []
        for path in sorted(self.data_dir.glob("*.db")):
            conn = sqlite3.connect(str(path))
            try:
                row = conn.execute("SELECT value FROM _meta WHERE key = 'name'").fetchone()
            except sqlite3.DatabaseError:
                row = None
            finally:
                conn.close()
            if row:
                names.append(row[0])
        return names

    def open(
        self,
        name: str,
        version: int | None = None,
        on_upgrade: UpgradeCallback | None = None,
    ) -> EngineConnection:
        """Open a connection, upgrading the database if needed.

        Opening a database that does not exist creates it. Without a
        version the connection opens at the stored version (a new database
        opens at version 1). When the requested version is higher than the
        stored one, ``on_upgrade`` runs inside an exclusive transaction and
        the new version is stored only if it returns normally.

        Args:
            name: Database name
            version: Requested version, or None for the current one
            on_upgrade: Called as on_upgrade(connection, transaction,
                old_version, new_version) during a version change

        Returns:
            An open EngineConnection; the caller must close it

        Raises:
            EngineUnavailable: SQLite runtime is too old
            VersionError: Requested version is lower than the stored one
            BlockedError: Other connections prevent the version change
            AbortError: The upgrade transaction was aborted
        """
        self.check_environment()
        if version is not None and (
            isinstance(version, bool) or not isinstance(version, int) or version < 1
        ):
            raise VersionError(f"Version must be a positive integer, got {version!r}")

        path = self._get_db_path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect(path)
        registered = False
        try:
            self._create_catalog(conn, name)
            current = _read_version(conn)
            target = version if version is not None else max(current, 1)
            if target < current:
                raise VersionError(
                    f"The requested version ({target}) is less than the existing version ({current})"
                )

            with self._lock:
                if target > current and self._open_counts[name]:
                    raise BlockedError(
                        f"Database '{name}' has {self._open_counts[name]} open connection(s); "
                        f"cannot upgrade from version {current} to {target}"
                    )
                self._open_counts[name] += 1
                registered = True

            handle = EngineConnection(self, name, conn, current)
            if target > current:
                self._run_upgrade(handle, current, target, on_upgrade)
            return handle
        except Exception:
            if registered:
                self._release(name)
            conn.close()
            raise

    def _create_catalog(self, conn: sqlite3.Connection, name: str) -> None:
        """Create catalog tables on first open."""
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = '_meta'"
        ).fetchone()
        if row is not None:
            return
        conn.executescript(_CATALOG)
        conn.execute("INSERT OR IGNORE INTO _meta (key, value) VALUES ('version', '0')")
        conn.execute("INSERT OR IGNORE INTO _meta (key, value) VALUES ('name', ?)", (name,))
        logger.debug("Created catalog", extra={"database": name})

    def _run_upgrade(
        self,
        handle: EngineConnection,
        old_version: int,
        new_version: int,
        on_upgrade: UpgradeCallback | None,
    ) -> None:
        conn = handle._conn
        conn.execute("BEGIN EXCLUSIVE")
        tx = Transaction(handle, None, TransactionMode.VERSIONCHANGE)
        try:
            stored = _read_version(conn)
            if stored != old_version:
                raise VersionError(
                    f"Database '{handle.name}' changed version concurrently "
                    f"({old_version} -> {stored})"
                )
            if on_upgrade is not None:
                on_upgrade(handle, tx, old_version, new_version)
            if tx.aborted:
                raise AbortError(f"Version change of '{handle.name}' was aborted")
            conn.execute(
                "UPDATE _meta SET value = ? WHERE key = 'version'",
                (str(new_version),),
            )
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            tx._finished = True

        handle.version = new_version
        logger.info(
            "Upgraded database",
            extra={"database": handle.name, "old_version": old_version, "new_version": new_version},
        )

    def delete_database(self, name: str) -> None:
        """Delete a database file. Deleting a missing database is a no-op.

        Raises:
            BlockedError: If connections to the database are still open
        """
        with self._lock:
            if self._open_counts[name]:
                raise BlockedError(
                    f"Database '{name}' has {self._open_counts[name]} open connection(s)"
                )
            path = self._get_db_path(name)
            for suffix in ("", "-wal", "-shm"):
                Path(f"{path}{suffix}").unlink(missing_ok=True)
        logger.info("Deleted database", extra={"database": name})

    def _release(self, name: str) -> None:
        with self._lock:
            self._open_counts[name] -= 1
            if self._open_counts[name] <= 0:
                del self._open_counts[name]


def _read_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("SELECT value FROM _meta WHERE key = 'version'").fetchone()
    return int(row[0]) if row else 0


class EngineConnection:
    """An open connection to one database at one version."""

    def __init__(
        self,
        engine: SqliteEngine,
        name: str,
        conn: sqlite3.Connection,
        version: int,
    ) -> None:
        self._engine = engine
        self._conn = conn
        self.name = name
        self.version = version
        self.closed = False

    def container_names(self) -> list[str]:
        """Names of all containers, sorted."""
        self._check_open()
        rows = self._conn.execute("SELECT name FROM _containers ORDER BY name").fetchall()
        return [r[0] for r in rows]

    def has_container(self, name: str) -> bool:
        self._check_open()
        row = self._conn.execute("SELECT 1 FROM _containers WHERE name = ?", (name,)).fetchone()
        return row is not None

    def transaction(
        self,
        containers: str | Sequence[str],
        mode: TransactionMode = TransactionMode.READONLY,
    ) -> Transaction:
        """Start a read-only or read-write transaction over some containers.

        Raises:
            ContainerNotFound: If any named container does not exist
            InvalidStateError: For VERSIONCHANGE, which only open() can start
        """
        self._check_open()
        if mode is TransactionMode.VERSIONCHANGE:
            raise InvalidStateError("Version change transactions are started by open()")
        scope = [containers] if isinstance(containers, str) else list(containers)
        for name in scope:
            if not self.has_container(name):
                raise ContainerNotFound(name)
        self._conn.execute("BEGIN IMMEDIATE" if mode is TransactionMode.READWRITE else "BEGIN")
        return Transaction(self, set(scope), mode)

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        try:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
        finally:
            self._conn.close()
            self._engine._release(self.name)

    def _check_open(self) -> None:
        if self.closed:
            raise InvalidStateError(f"Connection to '{self.name}' is closed")


class Transaction:
    """A transaction over a set of containers.

    Used as a context manager it commits when the block exits normally and
    rolls back when it raises. Version change transactions are committed by
    the engine after the upgrade callback returns.
    """

    def __init__(
        self,
        connection: EngineConnection,
        scope: set[str] | None,
        mode: TransactionMode,
    ) -> None:
        self.connection = connection
        self.mode = mode
        self._conn = connection._conn
        self._scope = scope
        self._finished = False
        self.aborted = False

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._finished:
            return
        if exc_type is not None:
            self.abort()
        else:
            self.commit()

    @property
    def active(self) -> bool:
        return not self._finished

    def container(self, name: str) -> ContainerHandle:
        """Get a handle on a container in this transaction's scope."""
        self._check_active()
        if self._scope is not None and name not in self._scope:
            raise InvalidStateError(f"Container '{name}' is not in the transaction scope")
        row = self._conn.execute(
            "SELECT auto_increment FROM _containers WHERE name = ?", (name,)
        ).fetchone()
        if row is None:
            raise ContainerNotFound(name)
        return ContainerHandle(self, name, bool(row[0]))

    def container_names(self) -> list[str]:
        self._check_active()
        rows = self._conn.execute("SELECT name FROM _containers ORDER BY name").fetchall()
        return [r[0] for r in rows]

    def create_container(self, name: str, auto_increment: bool = True) -> ContainerHandle:
        """Create a container. Version change transactions only."""
        self._check_versionchange()
        try:
            self._conn.execute(
                "INSERT INTO _containers (name, auto_increment, next_key) VALUES (?, ?, 1)",
                (name, int(auto_increment)),
            )
        except sqlite3.IntegrityError as e:
            raise ConstraintError(f"Container '{name}' already exists") from e
        return ContainerHandle(self, name, auto_increment)

    def delete_container(self, name: str) -> None:
        """Delete a container with its records and indexes. Version change only."""
        self._check_versionchange()
        cursor = self._conn.execute("DELETE FROM _containers WHERE name = ?", (name,))
        if cursor.rowcount == 0:
            raise ContainerNotFound(name)
        self._conn.execute("DELETE FROM _index_entries WHERE container = ?", (name,))
        self._conn.execute("DELETE FROM _indexes WHERE container = ?", (name,))
        self._conn.execute("DELETE FROM _records WHERE container = ?", (name,))

    def commit(self) -> None:
        self._check_active()
        if self.mode is TransactionMode.VERSIONCHANGE:
            raise InvalidStateError("Version change transactions commit when the upgrade returns")
        self._conn.execute("COMMIT")
        self._finished = True

    def abort(self) -> None:
        """Roll back everything done in this transaction."""
        self._check_active()
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")
        self.aborted = True
        self._finished = True

    def _check_active(self) -> None:
        if self._finished:
            state = "aborted" if self.aborted else "finished"
            raise InvalidStateError(f"Transaction has {state}")

    def _check_writable(self) -> None:
        self._check_active()
        if self.mode is TransactionMode.READONLY:
            raise InvalidStateError("The transaction is read-only")

    def _check_versionchange(self) -> None:
        self._check_active()
        if self.mode is not TransactionMode.VERSIONCHANGE:
            raise InvalidStateError("Structural changes need a version change transaction")


class ContainerHandle:
    """Record and index access to one container inside a transaction."""

    def __init__(self, tx: Transaction, name: str, auto_increment: bool) -> None:
        self._tx = tx
        self._conn = tx._conn
        self.name = name
        self.auto_increment = auto_increment

    # Indexes

    def indexes(self) -> list[IndexInfo]:
        self._tx._check_active()
        rows = self._conn.execute(
            "SELECT name, key_path, is_unique FROM _indexes WHERE container = ? ORDER BY name",
            (self.name,),
        ).fetchall()
        return [IndexInfo(name=r[0], key_path=r[1], unique=bool(r[2])) for r in rows]

    def index_names(self) -> list[str]:
        return [info.name for info in self.indexes()]

    def has_index(self, name: str) -> bool:
        return name in self.index_names()

    def index(self, name: str) -> IndexHandle:
        for info in self.indexes():
            if info.name == name:
                return IndexHandle(self, info)
        raise IndexNotFound(self.name, name)

    def create_index(
        self,
        name: str,
        key_path: str | None = None,
        unique: bool = False,
    ) -> IndexHandle:
        """Create an index and fill it from existing records.

        Raises:
            ConstraintError: If the index exists or existing records
                violate the uniqueness requirement
        """
        self._tx._check_versionchange()
        info = IndexInfo(name=name, key_path=key_path or name, unique=bool(unique))
        try:
            self._conn.execute(
                "INSERT INTO _indexes (container, name, key_path, is_unique) VALUES (?, ?, ?, ?)",
                (self.name, info.name, info.key_path, int(info.unique)),
            )
        except sqlite3.IntegrityError as e:
            raise ConstraintError(
                f"Index '{name}' already exists in container '{self.name}'"
            ) from e
        for key, value in self._iter_rows():
            self._write_entry(info, key, value)
        return IndexHandle(self, info)

    def delete_index(self, name: str) -> None:
        self._tx._check_versionchange()
        cursor = self._conn.execute(
            "DELETE FROM _indexes WHERE container = ? AND name = ?", (self.name, name)
        )
        if cursor.rowcount == 0:
            raise IndexNotFound(self.name, name)
        self._conn.execute(
            "DELETE FROM _index_entries WHERE container = ? AND index_name = ?",
            (self.name, name),
        )

    # Records

    def add(self, value: Mapping[str, Any], key: int | None = None) -> int:
        """Insert a record. Fails if the key is already taken.

        Raises:
            ConstraintError: Key exists or a unique index rejects a value
            DataError: Record is not a serializable mapping
        """
        self._tx._check_writable()
        payload = _encode(value)
        key = self._resolve_key(key)
        try:
            self._conn.execute(
                "INSERT INTO _records (container, key, value_json) VALUES (?, ?, ?)",
                (self.name, key, payload),
            )
        except sqlite3.IntegrityError as e:
            raise ConstraintError(f"Key {key} already exists in container '{self.name}'") from e
        self._index_record(key, value)
        return key

    def put(self, value: Mapping[str, Any], key: int | None = None) -> int:
        """Insert or replace a record."""
        self._tx._check_writable()
        payload = _encode(value)
        key = self._resolve_key(key)
        self._conn.execute(
            "DELETE FROM _index_entries WHERE container = ? AND record_key = ?",
            (self.name, key),
        )
        self._conn.execute(
            "INSERT OR REPLACE INTO _records (container, key, value_json) VALUES (?, ?, ?)",
            (self.name, key, payload),
        )
        self._index_record(key, value)
        return key

    def get(self, key: int) -> dict[str, Any] | None:
        self._tx._check_active()
        row = self._conn.execute(
            "SELECT value_json FROM _records WHERE container = ? AND key = ?",
            (self.name, key),
        ).fetchone()
        return _decode(row[0]) if row else None

    def get_all(self) -> list[dict[str, Any]]:
        return [value for _, value in self.entries()]

    def entries(self) -> list[tuple[int, dict[str, Any]]]:
        """All (key, record) pairs in key order."""
        self._tx._check_active()
        return list(self._iter_rows())

    def count(self) -> int:
        self._tx._check_active()
        row = self._conn.execute(
            "SELECT COUNT(*) FROM _records WHERE container = ?", (self.name,)
        ).fetchone()
        return row[0]

    def delete(self, key: int) -> None:
        """Delete a record. Deleting a missing key is a no-op."""
        self._tx._check_writable()
        self._conn.execute(
            "DELETE FROM _index_entries WHERE container = ? AND record_key = ?",
            (self.name, key),
        )
        self._conn.execute(
            "DELETE FROM _records WHERE container = ? AND key = ?", (self.name, key)
        )

    def clear(self) -> None:
        """Delete every record; the key generator keeps counting."""
        self._tx._check_writable()
        self._conn.execute("DELETE FROM _index_entries WHERE container = ?", (self.name,))
        self._conn.execute("DELETE FROM _records WHERE container = ?", (self.name,))

    def open_cursor(self, key_range: KeyRange | None = None) -> Cursor:
        """Forward cursor over records in key order."""
        self._tx._check_active()
        where, params = key_range.to_sql() if key_range else ("", [])
        sql = "SELECT key, value_json FROM _records WHERE container = ? AND key > ?"
        if where:
            sql += f" AND {where}"
        sql += " ORDER BY key LIMIT 1"

        def fetch(last_key: int | None) -> tuple[int, str] | None:
            after = last_key if last_key is not None else -(2**63)
            return self._conn.execute(sql, (self.name, after, *params)).fetchone()

        return Cursor(self, fetch)

    def _iter_rows(self) -> Iterator[tuple[int, dict[str, Any]]]:
        rows = self._conn.execute(
            "SELECT key, value_json FROM _records WHERE container = ? ORDER BY key",
            (self.name,),
        ).fetchall()
        for key, value_json in rows:
            yield key, _decode(value_json)

    def _resolve_key(self, key: int | None) -> int:
        row = self._conn.execute(
            "SELECT next_key FROM _containers WHERE name = ?", (self.name,)
        ).fetchone()
        if row is None:
            raise ContainerNotFound(self.name)
        next_key = row[0]
        if key is None:
            if not self.auto_increment:
                raise DataError(f"Container '{self.name}' has no key generator; a key is required")
            key = next_key
        elif isinstance(key, bool) or not isinstance(key, int):
            raise DataError(f"Record keys must be integers, got {key!r}")
        if key >= next_key:
            self._conn.execute(
                "UPDATE _containers SET next_key = ? WHERE name = ?", (key + 1, self.name)
            )
        return key

    def _index_record(self, key: int, value: Mapping[str, Any]) -> None:
        for info in self.indexes():
            self._write_entry(info, key, value)

    def _write_entry(self, info: IndexInfo, key: int, value: Mapping[str, Any]) -> None:
        if info.key_path not in value:
            return
        value_key = encode_index_key(value[info.key_path])
        if value_key is None:
            return
        try:
            self._conn.execute(
                """
                INSERT INTO _index_entries (container, index_name, value_key, record_key, is_unique)
                VALUES (?, ?, ?, ?, ?)
                """,
                (self.name, info.name, value_key, key, int(info.unique)),
            )
        except sqlite3.IntegrityError as e:
            raise ConstraintError(
                f"Unable to add key to index '{info.name}': at least one key does not "
                f"satisfy the uniqueness requirements"
            ) from e


class IndexHandle:
    """Lookups through one index. Equal values resolve in record key order."""

    def __init__(self, container: ContainerHandle, info: IndexInfo) -> None:
        self._container = container
        self._conn = container._conn
        self.info = info
        self.name = info.name
        self.unique = info.unique

    def _value_key(self, value: Any) -> str:
        value_key = encode_index_key(value)
        if value_key is None:
            raise DataError(f"{value!r} is not a valid key for index '{self.name}'")
        return value_key

    def get_key(self, value: Any) -> int | None:
        """Key of the first record whose indexed field equals value."""
        keys = self._keys(value, limit=1)
        return keys[0] if keys else None

    def get(self, value: Any) -> dict[str, Any] | None:
        key = self.get_key(value)
        return self._container.get(key) if key is not None else None

    def get_all_keys(self, value: Any) -> list[int]:
        return self._keys(value)

    def get_all(self, value: Any) -> list[dict[str, Any]]:
        return [r for r in (self._container.get(k) for k in self._keys(value)) if r is not None]

    def count(self, value: Any) -> int:
        return len(self._keys(value))

    def open_cursor(self, value: Any) -> Cursor:
        """Forward cursor over records whose indexed field equals value."""
        self._container._tx._check_active()
        value_key = self._value_key(value)
        sql = """
            SELECT r.key, r.value_json FROM _index_entries e
            JOIN _records r ON r.container = e.container AND r.key = e.record_key
            WHERE e.container = ? AND e.index_name = ? AND e.value_key = ?
            AND e.record_key > ?
            ORDER BY e.record_key LIMIT 1
        """

        def fetch(last_key: int | None) -> tuple[int, str] | None:
            after = last_key if last_key is not None else -(2**63)
            return self._conn.execute(
                sql, (self._container.name, self.name, value_key, after)
            ).fetchone()

        return Cursor(self._container, fetch)

    def _keys(self, value: Any, limit: int | None = None) -> list[int]:
        self._container._tx._check_active()
        sql = """
            SELECT record_key FROM _index_entries
            WHERE container = ? AND index_name = ? AND value_key = ?
            ORDER BY record_key
        """
        params: list[Any] = [self._container.name, self.name, self._value_key(value)]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [r[0] for r in self._conn.execute(sql, params).fetchall()]


class Cursor:
    """Forward cursor. Each advance re-queries past the last key it saw,
    so records written behind the cursor are not revisited.

    Example:
        >>> for position in container.open_cursor():
        ...     if position.value.get("status") == "old":
        ...         position.update({**position.value, "status": "new"})
    """

    def __init__(
        self,
        container: ContainerHandle,
        fetch: Callable[[int | None], tuple[int, str] | None],
    ) -> None:
        self._container = container
        self._fetch = fetch
        self.key: int | None = None
        self.value: dict[str, Any] | None = None

    def __iter__(self) -> Iterator[Cursor]:
        last_key: int | None = None
        while True:
            row = self._fetch(last_key)
            if row is None:
                self.key = None
                self.value = None
                return
            self.key, self.value = row[0], _decode(row[1])
            last_key = self.key
            yield self

    def update(self, value: Mapping[str, Any]) -> int:
        """Replace the record at the cursor position, keeping its key."""
        if self.key is None:
            raise InvalidStateError("Cursor is not positioned on a record")
        return self._container.put(value, key=self.key)

    def delete(self) -> None:
        if self.key is None:
            raise InvalidStateError("Cursor is not positioned on a record")
        self._container.delete(self.key)
