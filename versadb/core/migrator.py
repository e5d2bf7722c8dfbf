"""
Schema migrator for versadb.

Every structural change (initialize, container create/delete, index
add/remove/rename) is one version bump: the database is reopened at
version + 1 and the edits run inside the engine's upgrade transaction,
together with any data rewrite and the last-modified marker update.

Lifecycle of a structural operation:
    Requested -> VersionResolved -> UpgradeTransactionOpen -> EditsApplied
    -> Committed | Aborted

Invariants:
    - Each committed structural change raises the version by exactly one
    - Idempotent no-ops (existing container, absent container) never bump
    - Index renames clear and re-insert records in the same transaction,
      preserving record keys
    - Arguments are validated before any connection is opened
    - A change whose upgrade callback never ran (another change took the
      target version first) raises ConnectionBlockedError, never success

How to change safely:
    - Upgrade callbacks run on the executor thread; keep them synchronous
    - New structural edits must call tracker.touch() before returning
    - Test interrupted migrations: a failure must leave schema, data and
      version untouched
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from ..engine import EngineConnection, Transaction
from ..errors import (
    ConnectionBlockedError,
    DatabaseNotFoundError,
    EngineError,
    InvalidArgumentError,
    NoSuchContainerError,
    SchemaUpdateError,
    VersaDbError,
)
from . import validate
from .connection import ConnectionManager
from .records import RecordStore
from .tracker import ModificationTracker
from .transform import rename_fields
from .validate import RenameRule

logger = logging.getLogger(__name__)


class InitStatus(Enum):
    """Outcome of initialize()."""

    CREATED = "created"
    UPGRADED = "upgraded"
    READY = "ready"


class ContainerStatus(Enum):
    """Outcome of create_container() / delete_container()."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    DELETED = "deleted"
    ABSENT = "absent"


class SchemaMigrator:
    """Applies structural changes to a database, one version at a time.

    Example:
        >>> migrator = SchemaMigrator(connections, tracker, records)
        >>> await migrator.create_container("app", "users", [{"name": "email", "unique": True}])
        <ContainerStatus.CREATED: 'created'>
        >>> await migrator.update_container_structure(
        ...     "app", "users", rename=[{"old_name": "email", "new_name": "mail"}]
        ... )
        True
    """

    def __init__(
        self,
        connections: ConnectionManager,
        tracker: ModificationTracker,
        records: RecordStore,
    ) -> None:
        self._connections = connections
        self._tracker = tracker
        self._records = records

    @staticmethod
    def _superseded(database: str, version: int) -> ConnectionBlockedError:
        # Another change reached the target version first; our edits never ran
        return ConnectionBlockedError(
            f"Database '{database}' was already moved to version {version} by another "
            "change; nothing was applied",
            database=database,
        )

    async def _has_container(self, database: str, name: str) -> bool:
        def work(conn: EngineConnection) -> bool:
            return conn.has_container(name)

        return await self._connections.open(database, on_success=work)  # type: ignore[return-value]

    async def initialize(self, database: str, version: Any = None) -> InitStatus:
        """Create the database, or upgrade it to an explicit version.

        Args:
            database: Database name
            version: Target version; None creates at version 1 or leaves an
                existing database as it is

        Returns:
            CREATED for a new database, UPGRADED when the version was
            raised, READY when nothing changed

        Raises:
            InvalidArgumentError: version is not a positive integer
            EngineError: version is lower than the stored version
        """
        validate.check_name(database, "database")
        if version is not None and (
            isinstance(version, bool) or not isinstance(version, int) or version < 1
        ):
            raise InvalidArgumentError("version must be a positive integer", "version")

        existed = await self._connections.exists(database)
        if existed:
            current = await self._connections.current_version(database)
            if version is None or version == current:
                return InitStatus.READY
        target = version if version is not None else 1
        applied = False

        def upgrade(conn: EngineConnection, tx: Transaction, old: int, new: int) -> None:
            nonlocal applied
            applied = True
            self._tracker.touch(tx)

        await self._connections.open(database, target, on_upgrade=upgrade)
        if not applied:
            # A concurrent initialize reached the target first
            return InitStatus.READY
        status = InitStatus.UPGRADED if existed else InitStatus.CREATED
        logger.info(
            f"Database '{database}' {status.value}",
            extra={"database": database, "version": target},
        )
        return status

    async def create_container(
        self,
        database: str,
        name: str,
        indexes: Any = (),
    ) -> ContainerStatus:
        """Create a container with its indexes in one version bump.

        Args:
            database: Database name
            name: Container name
            indexes: Index specs, ``{"name": field, "unique": bool}`` or a
                bare field name

        Returns:
            CREATED, or ALREADY_EXISTS when the container was already there
            (the version is left alone)

        Raises:
            InvalidArgumentError: Bad name or index spec
            DatabaseNotFoundError: Database was never initialized
            ConnectionBlockedError: Another connection blocks the upgrade
        """
        validate.check_name(name, "name")
        specs = validate.parse_index_specs(indexes)

        version = await self._connections.current_version(database)
        if await self._has_container(database, name):
            return ContainerStatus.ALREADY_EXISTS

        already_exists = False
        applied = False

        def upgrade(conn: EngineConnection, tx: Transaction, old: int, new: int) -> None:
            nonlocal already_exists, applied
            applied = True
            if name in tx.container_names():
                already_exists = True
                tx.abort()
                return
            store = tx.create_container(name)
            for spec in specs:
                if not store.has_index(spec.name):
                    store.create_index(spec.name, unique=spec.unique)
            self._tracker.touch(tx)

        try:
            await self._connections.open(database, version + 1, on_upgrade=upgrade)
        except EngineError:
            if already_exists:
                return ContainerStatus.ALREADY_EXISTS
            raise
        if not applied:
            raise self._superseded(database, version + 1)

        logger.info(
            f"Created container '{name}'",
            extra={
                "database": database,
                "container": name,
                "indexes": [spec.name for spec in specs],
                "version": version + 1,
            },
        )
        return ContainerStatus.CREATED

    async def delete_container(self, database: str, name: str) -> ContainerStatus:
        """Delete a container and everything in it.

        Returns:
            DELETED, or ABSENT when there was nothing to delete (the version
            is left alone)
        """
        validate.check_name(name, "name")

        version = await self._connections.current_version(database)
        if not await self._has_container(database, name):
            return ContainerStatus.ABSENT

        applied = False

        def upgrade(conn: EngineConnection, tx: Transaction, old: int, new: int) -> None:
            nonlocal applied
            applied = True
            if name in tx.container_names():
                tx.delete_container(name)
            self._tracker.touch(tx)

        await self._connections.open(database, version + 1, on_upgrade=upgrade)
        if not applied:
            raise self._superseded(database, version + 1)
        logger.info(
            f"Deleted container '{name}'",
            extra={"database": database, "container": name, "version": version + 1},
        )
        return ContainerStatus.DELETED

    async def update_container_structure(
        self,
        database: str,
        name: str,
        add: Any = (),
        remove: Any = (),
        rename: Any = (),
    ) -> bool:
        """Add, remove and rename indexes of a container in one version bump.

        A rename also moves the field in every record: the container is
        cleared and each record re-inserted under its original key with
        ``old_name`` moved to ``new_name``. Either everything (index edits,
        data rewrite, marker) commits or nothing does.

        Args:
            database: Database name
            name: Container name
            add: Index specs to create; existing indexes are skipped
            remove: Index names to delete; absent indexes are skipped
            rename: ``{"old_name", "new_name", "unique"}`` rules, applied in order

        Returns:
            True once the change has committed

        Raises:
            InvalidArgumentError: Malformed arguments (nothing was touched)
            NoSuchContainerError: Container is not declared
            SchemaUpdateError: The change failed and was rolled back
        """
        validate.check_name(name, "name")
        adds = validate.parse_index_specs(add, "add")
        removes = validate.check_names(remove, "remove")
        renames = validate.parse_models(RenameRule, rename, "rename")

        version = await self._connections.current_version(database)
        if not await self._has_container(database, name):
            raise NoSuchContainerError(name)

        snapshot = await self._records.select_all_entries(database, name) if renames else []
        applied = False

        def upgrade(conn: EngineConnection, tx: Transaction, old: int, new: int) -> None:
            nonlocal applied
            applied = True
            store = tx.container(name)
            declared = set(store.index_names())
            for rule in renames:
                if rule.old_name not in declared:
                    raise SchemaUpdateError(
                        f"Cannot rename index '{rule.old_name}' of '{name}': it does not exist",
                        container=name,
                    )
                if rule.new_name in declared:
                    raise SchemaUpdateError(
                        f"Cannot rename index '{rule.old_name}' of '{name}' to "
                        f"'{rule.new_name}': an index with that name already exists",
                        container=name,
                    )

            for spec in adds:
                if not store.has_index(spec.name):
                    store.create_index(spec.name, unique=spec.unique)
            for index in removes:
                if store.has_index(index):
                    store.delete_index(index)
            for rule in renames:
                if store.has_index(rule.old_name):
                    store.delete_index(rule.old_name)
                if not store.has_index(rule.new_name):
                    store.create_index(rule.new_name, unique=rule.unique)

            if renames and snapshot:
                keys = [key for key, _ in snapshot]
                migrated = rename_fields(renames, (record for _, record in snapshot))
                store.clear()
                for key, record in zip(keys, migrated):
                    store.put(record, key=key)

            self._tracker.touch(tx)

        try:
            await self._connections.open(database, version + 1, on_upgrade=upgrade)
        except (
            ConnectionBlockedError,
            DatabaseNotFoundError,
            NoSuchContainerError,
            SchemaUpdateError,
        ):
            raise
        except Exception as e:
            reason = e.message if isinstance(e, VersaDbError) else str(e)
            raise SchemaUpdateError(
                f"Failed to update the structure of '{name}': {reason}",
                container=name,
            ) from e
        if not applied:
            raise self._superseded(database, version + 1)

        logger.info(
            f"Updated structure of '{name}'",
            extra={
                "database": database,
                "container": name,
                "added": [spec.name for spec in adds],
                "removed": removes,
                "renamed": [(rule.old_name, rule.new_name) for rule in renames],
                "migrated_records": len(snapshot),
                "version": version + 1,
            },
        )
        return True
