"""
Last-modified marker for versadb databases.

A single record under a fixed key in an internal container holds the
time of the last structural change. touch() writes it from inside the
upgrade transaction of that change, so the marker and the change commit
or roll back together.

Invariants:
    - At most one marker record exists per database (key 1, overwritten)
    - touch() is only called inside a version change transaction
    - A timezone that cannot be resolved skips the marker write but never
      fails the structural change
    - touch() never writes into a container holding indexes or other records

How to change safely:
    - Changing MARKER_KEY or MARKER_FIELD orphans markers in existing files
    - Keep touch() free of awaits; it runs inside the engine callback
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone as dt_timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..config import DEFAULT_MARKER_CONTAINER
from ..engine import ContainerHandle, EngineConnection, Transaction
from .connection import ConnectionManager

logger = logging.getLogger(__name__)

MARKER_KEY = 1
MARKER_FIELD = "last_modified"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def is_valid_timezone(tz: Any) -> bool:
    """Whether tz names a timezone known to the zoneinfo database."""
    if not isinstance(tz, str) or not tz:
        return False
    try:
        ZoneInfo(tz)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def format_timestamp(tz: str, moment: datetime | None = None) -> str:
    """Format a moment (default: now) as wall-clock time in tz.

    Raises:
        ZoneInfoNotFoundError: If tz is unknown
        ValueError: If tz is malformed
    """
    moment = moment or datetime.now(dt_timezone.utc)
    return moment.astimezone(ZoneInfo(tz)).strftime(TIMESTAMP_FORMAT)


class ModificationTracker:
    """Maintains the last-modified marker of a database.

    Attributes:
        timezone: IANA timezone used to format the marker
        marker_container: Internal container holding the marker

    Example:
        >>> tracker = ModificationTracker(connections, timezone="Europe/Lisbon")
        >>> tracker.set_timezone("Not/AZone")
        False
        >>> await tracker.read("app")
        '2024-05-01 13:45:10'
    """

    def __init__(
        self,
        connections: ConnectionManager,
        timezone: str = "UTC",
        marker_container: str = DEFAULT_MARKER_CONTAINER,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._connections = connections
        self._timezone = timezone
        self._marker_container = marker_container
        self._clock = clock or (lambda: datetime.now(dt_timezone.utc))

    @property
    def timezone(self) -> str:
        return self._timezone

    @property
    def marker_container(self) -> str:
        return self._marker_container

    def set_timezone(self, tz: Any) -> bool:
        """Change the marker timezone. Returns False and keeps the old one if invalid."""
        if not is_valid_timezone(tz):
            return False
        self._timezone = tz
        return True

    def set_marker_container_name(self, name: Any) -> None:
        """Change the marker container. Non-string or empty names are ignored.

        The container must be reserved for the marker: touch() leaves a
        container that holds indexes or other records alone.
        """
        if isinstance(name, str) and name:
            self._marker_container = name

    def is_marker(self, container: str) -> bool:
        return container == self._marker_container

    def touch(self, tx: Transaction) -> str | None:
        """Overwrite the marker with the current time.

        Must run inside a version change transaction. Creates the marker
        container on first use.

        Returns:
            The stored timestamp, or None if the timezone is unusable or the
            container holds other data
        """
        try:
            stamp = format_timestamp(self._timezone, self._clock())
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning(
                f"Skipping last-modified marker, timezone '{self._timezone}' is not usable: {e}"
            )
            return None

        name = self._marker_container
        if name not in tx.container_names():
            tx.create_container(name)
        store = tx.container(name)
        if not self._is_reserved(store):
            logger.warning(
                f"Skipping last-modified marker, container '{name}' holds other data"
            )
            return None
        store.put({MARKER_FIELD: stamp}, key=MARKER_KEY)
        return stamp

    @staticmethod
    def _is_reserved(store: ContainerHandle) -> bool:
        """Whether store holds nothing but (at most) the marker record."""
        if store.index_names():
            return False
        count = store.count()
        return count == 0 or (count == 1 and store.get(MARKER_KEY) is not None)

    async def read(self, database: str) -> str | None:
        """Timestamp of the last structural change, or None if never recorded."""
        name = self._marker_container

        def work(conn: EngineConnection) -> str | None:
            if not conn.has_container(name):
                return None
            with conn.transaction(name) as tx:
                record = tx.container(name).get(MARKER_KEY)
            if record is None:
                return None
            return record.get(MARKER_FIELD)

        return await self._connections.read(database, work)
