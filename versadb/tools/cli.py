"""
Admin CLI for versadb.

This tool inspects and edits databases in a data directory:
- info / containers / last-modified: Read-only inspection
- create-container / drop-container: Structural changes (one version bump each)
- dump: Print the records of a container as JSON
- drop-database: Delete a database file
- serve: Run the HTTP API

Usage:
    versadb --data-dir ./data info app
    versadb create-container app users --index email --unique email
    versadb dump app users > users.json
    versadb serve --port 8081

Invariants:
    - Failures print "Error [CODE]: message" to stderr and exit 1
    - Output on stdout is JSON for every data-returning command

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..client import Database
from ..config import Settings, setup_logging
from ..errors import VersaDbError

logger = logging.getLogger(__name__)


class AdminCLI:
    """Database administration commands.

    Example:
        >>> cli = AdminCLI(Settings(data_dir="./data"))
        >>> await cli.info("app")
        {'name': 'app', 'version': 3, 'containers': ['users'], 'last_modified': '...'}
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.engine = settings.create_engine()

    def _database(self, name: str) -> Database:
        return Database(name, engine=self.engine, settings=self.settings)

    async def info(self, name: str) -> dict[str, Any]:
        db = self._database(name)
        return {
            "name": name,
            "version": await db.version(),
            "containers": await db.container_names(),
            "last_modified": await db.last_modified(),
        }

    async def containers(self, name: str) -> list[str]:
        return await self._database(name).container_names()

    async def last_modified(self, name: str) -> str | None:
        return await self._database(name).last_modified()

    async def create_container(
        self,
        name: str,
        container: str,
        indexes: list[str],
        unique: list[str],
    ) -> str:
        """Create a container, initializing the database if needed.

        Fields listed in unique are indexed with a uniqueness constraint
        whether or not they also appear in indexes.
        """
        db = self._database(name)
        await db.initialize()
        specs = [{"name": field, "unique": field in unique} for field in indexes]
        specs += [{"name": field, "unique": True} for field in unique if field not in indexes]
        status = await db.create_container(container, specs)
        return status.value

    async def drop_container(self, name: str, container: str) -> str:
        status = await self._database(name).delete_container(container)
        return status.value

    async def dump(self, name: str, container: str, fields: list[str] | None = None) -> list[dict[str, Any]]:
        return await self._database(name).select_all(container, fields)

    async def drop_database(self, name: str) -> bool:
        return await self._database(name).delete_database()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="versadb", description="versadb administration tool")
    parser.add_argument("--data-dir", help="Directory holding the database files")
    parser.add_argument("--timezone", help="IANA timezone for last-modified markers")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    info_parser = subparsers.add_parser("info", help="Show version, containers and marker")
    info_parser.add_argument("database")

    containers_parser = subparsers.add_parser("containers", help="List containers")
    containers_parser.add_argument("database")

    marker_parser = subparsers.add_parser("last-modified", help="Show the last structural change")
    marker_parser.add_argument("database")

    create_parser = subparsers.add_parser("create-container", help="Create a container")
    create_parser.add_argument("database")
    create_parser.add_argument("container")
    create_parser.add_argument(
        "--index", action="append", default=[], help="Indexed field (repeatable)"
    )
    create_parser.add_argument(
        "--unique", action="append", default=[], help="Uniquely indexed field (repeatable)"
    )

    drop_parser = subparsers.add_parser("drop-container", help="Delete a container")
    drop_parser.add_argument("database")
    drop_parser.add_argument("container")

    dump_parser = subparsers.add_parser("dump", help="Print all records of a container")
    dump_parser.add_argument("database")
    dump_parser.add_argument("container")
    dump_parser.add_argument("--fields", help="Comma-separated projection")

    drop_db_parser = subparsers.add_parser("drop-database", help="Delete a database")
    drop_db_parser.add_argument("database")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to listen on")

    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    overrides: dict[str, Any] = {}
    if args.data_dir:
        overrides["data_dir"] = args.data_dir
    if args.timezone:
        overrides["timezone"] = args.timezone
    if args.log_level:
        overrides["log_level"] = args.log_level
    if getattr(args, "host", None):
        overrides["http_host"] = args.host
    if getattr(args, "port", None):
        overrides["http_port"] = args.port
    return Settings(**overrides)


async def _run(cli: AdminCLI, args: argparse.Namespace) -> Any:
    if args.command == "info":
        return await cli.info(args.database)
    if args.command == "containers":
        return await cli.containers(args.database)
    if args.command == "last-modified":
        return await cli.last_modified(args.database)
    if args.command == "create-container":
        return await cli.create_container(args.database, args.container, args.index, args.unique)
    if args.command == "drop-container":
        return await cli.drop_container(args.database, args.container)
    if args.command == "dump":
        fields = [f.strip() for f in args.fields.split(",")] if args.fields else None
        return await cli.dump(args.database, args.container, fields)
    if args.command == "drop-database":
        return await cli.drop_database(args.database)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = _settings_from_args(args)
    setup_logging(settings)

    if args.command == "serve":
        from ..api.http_server import run_http_server

        try:
            asyncio.run(run_http_server(settings))
        except KeyboardInterrupt:
            pass
        sys.exit(0)

    cli = AdminCLI(settings)
    try:
        result = asyncio.run(_run(cli, args))
    except VersaDbError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(result, indent=2, sort_keys=True))
    sys.exit(0)


if __name__ == "__main__":
    main()
