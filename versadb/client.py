"""
versadb client facade.

Database wires the connection manager, schema migrator, record store and
modification tracker together for one database name and exposes the
public operation surface.

Example:
    >>> async with Database("app") as db:
    ...     await db.create_container("users", [{"name": "email", "unique": True}])
    ...     key = await db.insert("users", {"email": "a@example.com", "age": 31})
    ...     user = await db.select_by_index("users", "email", "a@example.com")

Invariants:
    - No connection or version is cached between calls
    - Every method except set_timezone / set_marker_container_name is a
      coroutine that either returns or raises a VersaDbError
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from .config import Settings
from .core import (
    ConnectionManager,
    ContainerStatus,
    InitStatus,
    ModificationTracker,
    RecordStore,
    SchemaMigrator,
)
from .core import validate
from .engine import EngineConnection, SqliteEngine

logger = logging.getLogger(__name__)


class Database:
    """Versioned container store for one named database.

    Attributes:
        name: Database name
        settings: Settings the database was built from
        connections: Connection manager shared by all components
    """

    def __init__(
        self,
        name: str,
        engine: SqliteEngine | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the facade. Nothing is opened until the first call.

        Args:
            name: Database name
            engine: Storage engine; built from settings when omitted
            settings: Configuration; read from the environment when omitted
        """
        self.name = validate.check_name(name, "name")
        self.settings = settings or Settings()
        self.connections = ConnectionManager(engine or self.settings.create_engine())
        self.tracker = ModificationTracker(
            self.connections,
            timezone=self.settings.timezone,
            marker_container=self.settings.marker_container,
        )
        self.records = RecordStore(self.connections)
        self.migrator = SchemaMigrator(self.connections, self.tracker, self.records)

    async def __aenter__(self) -> Database:
        await self.initialize()
        return self

    async def __aexit__(self, *args: Any) -> None:
        pass

    def __repr__(self) -> str:
        return f"Database({self.name!r})"

    # Lifecycle

    async def initialize(self, version: int | None = None) -> InitStatus:
        return await self.migrator.initialize(self.name, version)

    async def delete_database(self, name: str | None = None) -> bool:
        """Delete this database (or another one by name) with all its data."""
        target = validate.check_name(name, "name") if name is not None else self.name
        await self.connections.delete_database(target)
        return True

    async def exists(self) -> bool:
        return await self.connections.exists(self.name)

    async def version(self) -> int:
        return await self.connections.current_version(self.name)

    async def container_names(self) -> list[str]:
        """User containers, without the internal marker container."""

        def work(conn: EngineConnection) -> list[str]:
            return [n for n in conn.container_names() if not self.tracker.is_marker(n)]

        return await self.connections.read(self.name, work)

    # Structure

    async def create_container(self, name: str, indexes: Any = ()) -> ContainerStatus:
        return await self.migrator.create_container(self.name, name, indexes)

    async def delete_container(self, name: str) -> ContainerStatus:
        return await self.migrator.delete_container(self.name, name)

    async def update_container_structure(
        self,
        name: str,
        add: Any = (),
        remove: Any = (),
        rename: Any = (),
    ) -> bool:
        return await self.migrator.update_container_structure(
            self.name, name, add=add, remove=remove, rename=rename
        )

    async def index_exists(self, container: str, name: str) -> bool:
        return await self.records.index_exists(self.name, container, name)

    async def indexes_exist(self, container: str, names: Any) -> list[bool]:
        return await self.records.indexes_exist(self.name, container, names)

    # Records

    async def insert(self, container: str, record: Any) -> int:
        return await self.records.insert(self.name, container, record)

    async def insert_many(self, container: str, records: Any) -> list[int]:
        return await self.records.insert_many(self.name, container, records)

    async def select_by_index(
        self,
        container: str,
        index: str,
        value: Any,
        fields: Sequence[str] | None = None,
    ) -> dict[str, Any] | None:
        return await self.records.select_by_index(self.name, container, index, value, fields)

    async def select_all_by_index(self, container: str, queries: Any) -> list[dict[str, Any] | None]:
        return await self.records.select_many_by_index(self.name, container, queries)

    select_many_by_index = select_all_by_index

    async def select_all(
        self,
        container: str,
        fields: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        return await self.records.select_all(self.name, container, fields)

    async def update_by_index(
        self,
        container: str,
        index: str,
        current_value: Any,
        new_value: Any,
        replace: bool = True,
        other_updates: Any = (),
    ) -> int:
        """Update every record whose ``index`` field equals current_value.

        Scans the whole container; see RecordStore.update_by_index.
        """
        return await self.records.update_by_index(
            self.name,
            container,
            index,
            current_value,
            new_value,
            replace=replace,
            other_updates=other_updates,
        )

    async def delete_by_index(
        self,
        container: str,
        index: str,
        value: Any,
        delete_all: bool = False,
    ) -> int:
        return await self.records.delete_by_index(
            self.name, container, index, value, delete_all=delete_all
        )

    async def delete_many_by_index(self, container: str, queries: Any) -> int:
        return await self.records.delete_many_by_index(self.name, container, queries)

    async def delete_all(self, container: str) -> bool:
        return await self.records.delete_all(self.name, container)

    clean = delete_all

    async def delete_fields(self, container: str, fields: Any) -> int:
        return await self.records.delete_fields(self.name, container, fields)

    # Modification marker

    async def last_modified(self) -> str | None:
        return await self.tracker.read(self.name)

    def set_timezone(self, tz: Any) -> bool:
        return self.tracker.set_timezone(tz)

    def set_marker_container_name(self, name: Any) -> None:
        self.tracker.set_marker_container_name(name)
