"""
Record store: CRUD and index queries for versadb containers.

Every operation opens a same-version connection, runs one read-only or
read-write transaction, and releases the connection. Nothing here changes
the database version.

Invariants:
    - Multi-record writes (insert_many, delete_many_by_index,
      update_by_index) are all-or-nothing
    - select_many_by_index degrades per-entry failures to None
    - Records are returned as plain dicts without their keys
    - Cursor scans visit each record once, in key order

How to change safely:
    - Validate arguments before calling the connection manager
    - Keep the work functions synchronous; they run on the executor
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from ..engine import ContainerHandle, EngineConnection, EngineFailure, TransactionMode
from ..errors import InvalidArgumentError
from . import validate
from .connection import ConnectionManager
from .transform import project
from .validate import DeleteQuery, FieldUpdate, SelectQuery

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without cross-type coercion.

    Numbers compare by value (1 == 1.0) but never equal booleans or
    strings; everything else must share a type.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    return type(left) is type(right) and left == right


class RecordStore:
    """Record-level operations on the containers of a database.

    Example:
        >>> records = RecordStore(connections)
        >>> key = await records.insert("app", "users", {"email": "a@example.com"})
        >>> await records.select_by_index("app", "users", "email", "a@example.com")
        {'email': 'a@example.com'}
    """

    def __init__(self, connections: ConnectionManager) -> None:
        self._connections = connections

    async def _transact(
        self,
        database: str,
        container: str,
        mode: TransactionMode,
        work: Callable[[ContainerHandle], T],
    ) -> T:
        def run(conn: EngineConnection) -> T:
            with conn.transaction(container, mode) as tx:
                return work(tx.container(container))

        return await self._connections.read(database, run)

    # Inserts

    async def insert(self, database: str, container: str, record: Any) -> int:
        """Insert one record.

        Returns:
            The synthetic key assigned to the record

        Raises:
            NoSuchContainerError: Container is not declared
            ConstraintViolationError: A unique index rejected a value
        """
        validate.check_name(container, "container")
        record = validate.check_record(record)

        key = await self._transact(
            database, container, TransactionMode.READWRITE, lambda store: store.add(record)
        )
        logger.debug("Inserted record", extra={"database": database, "container": container, "key": key})
        return key

    async def insert_many(self, database: str, container: str, records: Any) -> list[int]:
        """Insert records atomically; if one fails, none are stored.

        Returns:
            Assigned keys, in input order
        """
        validate.check_name(container, "container")
        records = validate.check_records(records)

        def work(store: ContainerHandle) -> list[int]:
            return [store.add(record) for record in records]

        keys = await self._transact(database, container, TransactionMode.READWRITE, work)
        logger.debug(
            "Inserted records",
            extra={"database": database, "container": container, "count": len(keys)},
        )
        return keys

    # Selects

    async def select_by_index(
        self,
        database: str,
        container: str,
        index: str,
        value: Any,
        fields: Sequence[str] | None = None,
    ) -> dict[str, Any] | None:
        """First record whose indexed field equals value.

        Args:
            database: Database name
            container: Container name
            index: Index to look the value up in
            value: Value to match
            fields: Optional projection

        Returns:
            The record (or its projection), None if nothing matches or the
            projection leaves no fields

        Raises:
            NoSuchIndexError: Index is not declared on the container
        """
        validate.check_name(container, "container")
        validate.check_name(index, "index")
        projection = validate.check_fields(fields)

        def work(store: ContainerHandle) -> dict[str, Any] | None:
            return project(store.index(index).get(value), projection)

        return await self._transact(database, container, TransactionMode.READONLY, work)

    async def select_many_by_index(
        self,
        database: str,
        container: str,
        queries: Any,
    ) -> list[dict[str, Any] | None]:
        """Run several index lookups in one read-only transaction.

        Each query is ``{"index": ..., "value": ..., "fields": [...]}``.
        Results line up with the queries. A query that fails (unknown
        index, unusable value) yields None in its slot instead of failing
        the whole call.
        """
        validate.check_name(container, "container")
        parsed = validate.parse_models(SelectQuery, queries, "queries", allow_empty=False)

        def work(store: ContainerHandle) -> list[dict[str, Any] | None]:
            results: list[dict[str, Any] | None] = []
            for query in parsed:
                try:
                    record = store.index(query.index).get(query.value)
                except EngineFailure as e:
                    logger.warning(
                        f"Lookup on index '{query.index}' of '{container}' failed: {e}",
                        extra={"database": database, "container": container},
                    )
                    results.append(None)
                    continue
                results.append(project(record, validate.check_fields(query.fields)))
            return results

        return await self._transact(database, container, TransactionMode.READONLY, work)

    async def select_all(
        self,
        database: str,
        container: str,
        fields: Sequence[str] | None = None,
    ) -> list[dict[str, Any]]:
        """All records in key order, optionally projected.

        With a projection, records that hold none of the fields are left out.
        """
        validate.check_name(container, "container")
        projection = validate.check_fields(fields)

        def work(store: ContainerHandle) -> list[dict[str, Any]]:
            projected = (project(record, projection) for record in store.get_all())
            return [record for record in projected if record is not None]

        return await self._transact(database, container, TransactionMode.READONLY, work)

    async def select_all_entries(
        self,
        database: str,
        container: str,
    ) -> list[tuple[int, dict[str, Any]]]:
        """All (key, record) pairs in key order."""
        validate.check_name(container, "container")
        return await self._transact(
            database, container, TransactionMode.READONLY, lambda store: store.entries()
        )

    # Updates

    async def update_by_index(
        self,
        database: str,
        container: str,
        index: str,
        current_value: Any,
        new_value: Any,
        replace: bool = True,
        other_updates: Any = (),
    ) -> int:
        """Update every record whose field ``index`` equals current_value.

        This walks the whole container with a cursor (O(n) per call), so
        it also works for fields without an index or with duplicates.
        Each record is matched once, against the value it had before the
        scan started.

        Args:
            database: Database name
            container: Container name
            index: Field to match on
            current_value: Value to match (no cross-type coercion)
            new_value: Value written to the matched field when replace is True
            replace: Overwrite the matched field with new_value
            other_updates: ``{"index": field, "value": v}`` entries applied
                to matched records that already have that field

        Returns:
            Number of records updated

        Raises:
            InvalidArgumentError: replace is False and there is nothing else to update
            ConstraintViolationError: An update collides on a unique index
        """
        validate.check_name(container, "container")
        validate.check_name(index, "index")
        validate.check_bool(replace, "replace")
        updates = validate.parse_models(FieldUpdate, other_updates, "other_updates")
        if not replace and not updates:
            raise InvalidArgumentError(
                "other_updates must name the fields to change when replace is False",
                "other_updates",
            )

        def work(store: ContainerHandle) -> int:
            updated = 0
            for position in store.open_cursor():
                record = dict(position.value or {})
                if not strict_equals(record.get(index, _MISSING), current_value):
                    continue
                if replace:
                    record[index] = new_value
                for update in updates:
                    if update.index in record:
                        record[update.index] = update.value
                position.update(record)
                updated += 1
            return updated

        count = await self._transact(database, container, TransactionMode.READWRITE, work)
        logger.debug(
            "Updated records",
            extra={"database": database, "container": container, "count": count},
        )
        return count

    # Deletes

    async def delete_by_index(
        self,
        database: str,
        container: str,
        index: str,
        value: Any,
        delete_all: bool = False,
    ) -> int:
        """Delete the first record (by key) whose index value equals value,
        or every such record when delete_all is True.

        Returns:
            Number of records deleted

        Raises:
            NoSuchIndexError: Index is not declared on the container
        """
        validate.check_name(container, "container")
        validate.check_name(index, "index")
        validate.check_bool(delete_all, "delete_all")
        query = DeleteQuery(index=index, value=value, delete_all=delete_all)

        count = await self._transact(
            database,
            container,
            TransactionMode.READWRITE,
            lambda store: _delete_matching(store, query),
        )
        logger.debug(
            "Deleted records",
            extra={"database": database, "container": container, "count": count},
        )
        return count

    async def delete_many_by_index(self, database: str, container: str, queries: Any) -> int:
        """Run several index deletions in one transaction, all-or-nothing.

        Each query is ``{"index": ..., "value": ..., "delete_all": bool}``.

        Returns:
            Total number of records deleted
        """
        validate.check_name(container, "container")
        parsed = validate.parse_models(DeleteQuery, queries, "queries", allow_empty=False)

        def work(store: ContainerHandle) -> int:
            return sum(_delete_matching(store, query) for query in parsed)

        return await self._transact(database, container, TransactionMode.READWRITE, work)

    async def delete_all(self, database: str, container: str) -> bool:
        """Remove every record; the container and its indexes stay."""
        validate.check_name(container, "container")

        def work(store: ContainerHandle) -> bool:
            store.clear()
            return True

        result = await self._transact(database, container, TransactionMode.READWRITE, work)
        logger.debug("Cleared container", extra={"database": database, "container": container})
        return result

    clean = delete_all

    async def delete_fields(self, database: str, container: str, fields: Any) -> int:
        """Strip fields from every record, deleting records left empty.

        Returns:
            Number of records changed or deleted
        """
        validate.check_name(container, "container")
        names = set(validate.check_names(fields, "fields"))
        if not names:
            raise InvalidArgumentError("fields must name at least one field", "fields")

        def work(store: ContainerHandle) -> int:
            touched = 0
            for position in store.open_cursor():
                record = position.value or {}
                kept = {k: v for k, v in record.items() if k not in names}
                if len(kept) == len(record):
                    continue
                if kept:
                    position.update(kept)
                else:
                    position.delete()
                touched += 1
            return touched

        return await self._transact(database, container, TransactionMode.READWRITE, work)

    # Introspection

    async def index_exists(self, database: str, container: str, name: str) -> bool:
        validate.check_name(container, "container")
        validate.check_name(name, "name")
        return await self._transact(
            database, container, TransactionMode.READONLY, lambda store: store.has_index(name)
        )

    async def indexes_exist(self, database: str, container: str, names: Any) -> list[bool]:
        validate.check_name(container, "container")
        wanted = validate.check_names(names, "names")

        def work(store: ContainerHandle) -> list[bool]:
            declared = set(store.index_names())
            return [name in declared for name in wanted]

        return await self._transact(database, container, TransactionMode.READONLY, work)


def _delete_matching(store: ContainerHandle, query: DeleteQuery) -> int:
    index = store.index(query.index)
    if query.delete_all:
        keys = index.get_all_keys(query.value)
        for key in keys:
            store.delete(key)
        return len(keys)
    for position in index.open_cursor(query.value):
        position.delete()
        return 1
    return 0
