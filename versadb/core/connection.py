"""
Connection manager for versadb.

Every public operation goes through ConnectionManager.open(): it opens a
connection to the named database (optionally at a new version), runs the
upgrade and success callbacks, and always releases the connection.

The blocking engine work runs in the event loop's default executor, so
the awaiting coroutine suspends until the engine reports success or
failure. There is exactly one way out of open(): a return value or a
raised VersaDbError.

Invariants:
    - A connection never outlives the open() call that created it
    - Engine failures are translated into the versadb error taxonomy
    - The database version is read fresh for every operation

How to change safely:
    - New engine failure kinds need an entry in translate_engine_error()
    - Callbacks must stay synchronous; they run on the executor thread
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar

from ..engine import (
    BlockedError,
    ConstraintError,
    ContainerNotFound,
    EngineConnection,
    EngineFailure,
    EngineUnavailable,
    HostError,
    IndexNotFound,
    SqliteEngine,
    Transaction,
)
from ..errors import (
    ConnectionBlockedError,
    ConstraintViolationError,
    DatabaseNotFoundError,
    EngineError,
    NoSuchContainerError,
    NoSuchIndexError,
    UnsupportedEnvironmentError,
    VersaDbError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

UpgradeHook = Callable[[EngineConnection, Transaction, int, int], None]
SuccessHook = Callable[[EngineConnection], T]


def translate_engine_error(
    error: Exception,
    database: str | None = None,
    operation: str | None = None,
) -> VersaDbError:
    """Map an engine failure onto the versadb error taxonomy."""
    if isinstance(error, EngineUnavailable):
        return UnsupportedEnvironmentError(str(error))
    if isinstance(error, BlockedError):
        return ConnectionBlockedError(str(error), database=database)
    if isinstance(error, ConstraintError):
        return ConstraintViolationError(str(error))
    if isinstance(error, ContainerNotFound):
        return NoSuchContainerError(error.container)
    if isinstance(error, IndexNotFound):
        return NoSuchIndexError(error.container, error.index)
    return EngineError(str(error), operation=operation)


class ConnectionManager:
    """Opens per-operation connections to versioned databases.

    Example:
        >>> manager = ConnectionManager(SqliteEngine("/var/lib/versadb"))
        >>> names = await manager.open("app", on_success=lambda c: c.container_names())
    """

    def __init__(self, engine: SqliteEngine | None) -> None:
        """Initialize the manager.

        Args:
            engine: Storage engine; None means no storage is available and
                every operation fails with UnsupportedEnvironmentError
        """
        self.engine = engine

    def _require_engine(self) -> SqliteEngine:
        if self.engine is None:
            raise UnsupportedEnvironmentError("No storage engine is available to store information")
        try:
            self.engine.check_environment()
        except EngineUnavailable as e:
            raise UnsupportedEnvironmentError(str(e)) from e
        return self.engine

    async def _run(self, func: Callable[[], T]) -> T:
        return await asyncio.get_event_loop().run_in_executor(None, func)

    async def open(
        self,
        name: str,
        version: int | None = None,
        on_upgrade: UpgradeHook | None = None,
        on_success: SuccessHook[T] | None = None,
    ) -> T | int:
        """Open a connection, run the callbacks, release the connection.

        Args:
            name: Database name
            version: Target version; None opens at the current version
            on_upgrade: Structural edits, run inside the upgrade
                transaction when version is above the stored version
            on_success: Non-structural work, run after any upgrade

        Returns:
            The result of on_success, or the database version when no
            success callback is given

        Raises:
            UnsupportedEnvironmentError: Storage engine unavailable
            ConnectionBlockedError: Open connections block the upgrade
            VersaDbError: Any other failure, translated from the engine
        """
        engine = self._require_engine()

        def run() -> T | int:
            conn = engine.open(name, version, on_upgrade=on_upgrade)
            try:
                if on_success is None:
                    return conn.version
                return on_success(conn)
            finally:
                conn.close()

        try:
            return await self._run(run)
        except (EngineFailure, HostError) as e:
            raise translate_engine_error(e, database=name) from e

    async def exists(self, name: str) -> bool:
        """Whether the database has been created."""
        engine = self._require_engine()
        return await self._run(lambda: engine.exists(name))

    async def current_version(self, name: str) -> int:
        """Current version of an existing database.

        Raises:
            DatabaseNotFoundError: If the database was never initialized
        """
        if not await self.exists(name):
            raise DatabaseNotFoundError(name)
        version = await self.open(name)
        logger.debug("Resolved version", extra={"database": name, "version": version})
        return version  # type: ignore[return-value]

    async def delete_database(self, name: str) -> None:
        engine = self._require_engine()
        try:
            await self._run(lambda: engine.delete_database(name))
        except (EngineFailure, HostError) as e:
            raise translate_engine_error(e, database=name) from e

    async def databases(self) -> list[str]:
        engine = self._require_engine()
        return await self._run(engine.databases)

    async def require_database(self, name: str) -> None:
        """Raise DatabaseNotFoundError unless the database exists."""
        if not await self.exists(name):
            raise DatabaseNotFoundError(name)

    async def read(self, name: str, work: Callable[[EngineConnection], T]) -> T:
        """Run work on a same-version connection to an existing database."""
        await self.require_database(name)
        return await self.open(name, on_success=work)  # type: ignore[return-value]
