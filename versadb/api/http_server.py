"""
HTTP server for versadb.

This module exposes the Database operations as a small JSON API. It's
useful for:
- Inspecting and editing databases from other processes
- Manual testing and debugging with curl
- Clients written in other languages

Routes (all JSON):
    GET    /v1/health
    GET    /v1/databases
    POST   /v1/databases/{db}                                 initialize
    GET    /v1/databases/{db}                                 info
    DELETE /v1/databases/{db}
    GET    /v1/databases/{db}/last-modified
    GET    /v1/databases/{db}/containers
    POST   /v1/databases/{db}/containers                      create container
    PATCH  /v1/databases/{db}/containers/{container}          update structure
    DELETE /v1/databases/{db}/containers/{container}
    GET    /v1/databases/{db}/containers/{container}/indexes?names=a,b
    GET    /v1/databases/{db}/containers/{container}/records?fields=a,b
    POST   /v1/databases/{db}/containers/{container}/records  insert one or many
    DELETE /v1/databases/{db}/containers/{container}/records  delete all
    POST   /v1/databases/{db}/containers/{container}/select
    POST   /v1/databases/{db}/containers/{container}/select-many
    POST   /v1/databases/{db}/containers/{container}/update
    POST   /v1/databases/{db}/containers/{container}/delete
    POST   /v1/databases/{db}/containers/{container}/delete-fields

Invariants:
    - Every handler builds a fresh Database; nothing is cached per request
    - VersaDbError codes map to a fixed set of HTTP statuses
    - Error bodies are {"error", "error_code", "details"}

How to change safely:
    - Keep routes in sync with the Database facade
    - Add new status mappings to ERROR_STATUS, not to individual handlers
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..client import Database
from ..config import Settings
from ..engine import SqliteEngine
from ..errors import VersaDbError

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "INVALID_ARGUMENT": 400,
    "DATABASE_NOT_FOUND": 404,
    "NO_SUCH_CONTAINER": 404,
    "NO_SUCH_INDEX": 404,
    "CONSTRAINT_VIOLATION": 409,
    "CONNECTION_BLOCKED": 409,
}

ENGINE_KEY = web.AppKey("engine", SqliteEngine)
SETTINGS_KEY = web.AppKey("settings", Settings)


def create_http_app(
    engine: SqliteEngine | None = None,
    settings: Settings | None = None,
) -> web.Application:
    """Create the versadb HTTP application.

    Args:
        engine: Storage engine; built from settings when omitted
        settings: Configuration; read from the environment when omitted

    Returns:
        aiohttp Application instance
    """
    settings = settings or Settings()
    app = web.Application(middlewares=[error_middleware])
    app[SETTINGS_KEY] = settings
    app[ENGINE_KEY] = engine or settings.create_engine()

    db = "/v1/databases/{db}"
    container = db + "/containers/{container}"

    app.router.add_get("/v1/health", handle_health)
    app.router.add_get("/v1/databases", handle_list_databases)
    app.router.add_post(db, handle_initialize)
    app.router.add_get(db, handle_info)
    app.router.add_delete(db, handle_delete_database)
    app.router.add_get(db + "/last-modified", handle_last_modified)
    app.router.add_get(db + "/containers", handle_list_containers)
    app.router.add_post(db + "/containers", handle_create_container)
    app.router.add_patch(container, handle_update_structure)
    app.router.add_delete(container, handle_delete_container)
    app.router.add_get(container + "/indexes", handle_indexes_exist)
    app.router.add_get(container + "/records", handle_select_all)
    app.router.add_post(container + "/records", handle_insert)
    app.router.add_delete(container + "/records", handle_delete_all)
    app.router.add_post(container + "/select", handle_select)
    app.router.add_post(container + "/select-many", handle_select_many)
    app.router.add_post(container + "/update", handle_update)
    app.router.add_post(container + "/delete", handle_delete)
    app.router.add_post(container + "/delete-fields", handle_delete_fields)

    return app


@web.middleware
async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except VersaDbError as e:
        status = ERROR_STATUS.get(e.code, 500)
        if status == 500:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
        return web.json_response(
            {"error": e.message, "error_code": e.code, "details": e.details},
            status=status,
        )
    except Exception as e:
        logger.error(f"HTTP handler error: {e}", exc_info=True)
        return web.json_response(
            {"error": str(e), "error_code": "INTERNAL", "details": {}},
            status=500,
        )


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "INVALID_ARGUMENT", "details": {}}),
        content_type="application/json",
    )


async def _read_json(request: web.Request) -> dict[str, Any]:
    """Parse the request body as a JSON object."""
    if not request.can_read_body:
        return {}
    try:
        body = await request.json()
    except json.JSONDecodeError:
        raise _bad_request("Invalid JSON body")
    if not isinstance(body, dict):
        raise _bad_request("JSON body must be an object")
    return body


def _require(body: dict[str, Any], field: str) -> Any:
    if field not in body:
        raise _bad_request(f"{field} is required")
    return body[field]


def _csv(request: web.Request, name: str) -> list[str] | None:
    raw = request.query.get(name)
    if raw is None:
        return None
    return [part.strip() for part in raw.split(",") if part.strip()]


def _database(request: web.Request) -> Database:
    return Database(
        request.match_info["db"],
        engine=request.app[ENGINE_KEY],
        settings=request.app[SETTINGS_KEY],
    )


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /v1/health - Health check."""
    engine = request.app[ENGINE_KEY]
    return web.json_response(
        {
            "healthy": True,
            "data_dir": str(engine.data_dir),
            "sqlite_version": sqlite3.sqlite_version,
        }
    )


async def handle_list_databases(request: web.Request) -> web.Response:
    engine = request.app[ENGINE_KEY]
    names = await asyncio.get_event_loop().run_in_executor(None, engine.databases)
    return web.json_response({"databases": names})


async def handle_initialize(request: web.Request) -> web.Response:
    """Handle POST /v1/databases/{db} - Create or upgrade a database."""
    body = await _read_json(request)
    db = _database(request)
    status = await db.initialize(body.get("version"))
    return web.json_response(
        {"status": status.value, "version": await db.version()},
        status=201 if status.value == "created" else 200,
    )


async def handle_info(request: web.Request) -> web.Response:
    """Handle GET /v1/databases/{db} - Version, containers and marker."""
    db = _database(request)
    return web.json_response(
        {
            "name": db.name,
            "version": await db.version(),
            "containers": await db.container_names(),
            "last_modified": await db.last_modified(),
        }
    )


async def handle_delete_database(request: web.Request) -> web.Response:
    db = _database(request)
    await db.delete_database()
    return web.json_response({"deleted": True})


async def handle_last_modified(request: web.Request) -> web.Response:
    db = _database(request)
    return web.json_response({"last_modified": await db.last_modified()})


async def handle_list_containers(request: web.Request) -> web.Response:
    db = _database(request)
    return web.json_response({"containers": await db.container_names()})


async def handle_create_container(request: web.Request) -> web.Response:
    """Handle POST /v1/databases/{db}/containers - Create a container."""
    body = await _read_json(request)
    db = _database(request)
    status = await db.create_container(_require(body, "name"), body.get("indexes", []))
    return web.json_response(
        {"status": status.value},
        status=201 if status.value == "created" else 200,
    )


async def handle_update_structure(request: web.Request) -> web.Response:
    """Handle PATCH /v1/databases/{db}/containers/{container} - Edit indexes."""
    body = await _read_json(request)
    db = _database(request)
    await db.update_container_structure(
        request.match_info["container"],
        add=body.get("add", []),
        remove=body.get("remove", []),
        rename=body.get("rename", []),
    )
    return web.json_response({"updated": True})


async def handle_delete_container(request: web.Request) -> web.Response:
    db = _database(request)
    status = await db.delete_container(request.match_info["container"])
    return web.json_response({"status": status.value})


async def handle_indexes_exist(request: web.Request) -> web.Response:
    """Handle GET .../indexes?names=a,b - Which indexes are declared."""
    names = _csv(request, "names")
    if not names:
        raise _bad_request("names query parameter is required")
    db = _database(request)
    found = await db.indexes_exist(request.match_info["container"], names)
    return web.json_response({"indexes": dict(zip(names, found))})


async def handle_select_all(request: web.Request) -> web.Response:
    db = _database(request)
    records = await db.select_all(request.match_info["container"], _csv(request, "fields"))
    return web.json_response({"records": records})


async def handle_insert(request: web.Request) -> web.Response:
    """Handle POST .../records - Insert {"record": {...}} or {"records": [...]}."""
    body = await _read_json(request)
    db = _database(request)
    container = request.match_info["container"]
    if "records" in body:
        keys = await db.insert_many(container, body["records"])
        return web.json_response({"keys": keys}, status=201)
    key = await db.insert(container, _require(body, "record"))
    return web.json_response({"key": key}, status=201)


async def handle_delete_all(request: web.Request) -> web.Response:
    db = _database(request)
    await db.delete_all(request.match_info["container"])
    return web.json_response({"cleared": True})


async def handle_select(request: web.Request) -> web.Response:
    body = await _read_json(request)
    db = _database(request)
    record = await db.select_by_index(
        request.match_info["container"],
        _require(body, "index"),
        body.get("value"),
        body.get("fields"),
    )
    return web.json_response({"record": record})


async def handle_select_many(request: web.Request) -> web.Response:
    body = await _read_json(request)
    db = _database(request)
    records = await db.select_all_by_index(
        request.match_info["container"], _require(body, "queries")
    )
    return web.json_response({"records": records})


async def handle_update(request: web.Request) -> web.Response:
    body = await _read_json(request)
    db = _database(request)
    updated = await db.update_by_index(
        request.match_info["container"],
        _require(body, "index"),
        body.get("current_value"),
        body.get("new_value"),
        replace=body.get("replace", True),
        other_updates=body.get("other_updates", []),
    )
    return web.json_response({"updated": updated})


async def handle_delete(request: web.Request) -> web.Response:
    """Handle POST .../delete - One index deletion, or {"queries": [...]}."""
    body = await _read_json(request)
    db = _database(request)
    container = request.match_info["container"]
    if "queries" in body:
        deleted = await db.delete_many_by_index(container, body["queries"])
    else:
        deleted = await db.delete_by_index(
            container,
            _require(body, "index"),
            body.get("value"),
            delete_all=body.get("delete_all", False),
        )
    return web.json_response({"deleted": deleted})


async def handle_delete_fields(request: web.Request) -> web.Response:
    body = await _read_json(request)
    db = _database(request)
    touched = await db.delete_fields(request.match_info["container"], _require(body, "fields"))
    return web.json_response({"touched": touched})


async def run_http_server(
    settings: Settings | None = None,
    engine: SqliteEngine | None = None,
) -> None:
    """Run the HTTP server until cancelled.

    Args:
        settings: Configuration (host, port, data directory)
        engine: Storage engine; built from settings when omitted
    """
    settings = settings or Settings()
    app = create_http_app(engine, settings)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, settings.http_host, settings.http_port)
    await site.start()

    logger.info(f"HTTP server running on http://{settings.http_host}:{settings.http_port}")

    # Keep running until cancelled
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await runner.cleanup()
