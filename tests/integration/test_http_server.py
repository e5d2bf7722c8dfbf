"""
Integration tests for the HTTP API.

Tests cover:
- Health and database lifecycle endpoints
- Container structure endpoints
- Record endpoints
- Error mapping to HTTP statuses
"""

import contextlib
import tempfile

import httpx
import pytest
from aiohttp import test_utils

from versadb import Settings
from versadb.api.http_server import create_http_app
from versadb.engine import SqliteEngine


@contextlib.asynccontextmanager
async def serve(data_dir: str):
    """Run the app on a local port and yield an httpx client for it."""
    app = create_http_app(SqliteEngine(data_dir, wal_mode=False), Settings(data_dir=data_dir))
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        async with httpx.AsyncClient(base_url=str(server.make_url("/"))) as client:
            yield client
    finally:
        await server.close()


class TestHttpServer:
    """Integration tests for the versadb HTTP API."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.mark.asyncio
    async def test_health(self, data_dir):
        async with serve(data_dir) as client:
            response = await client.get("/v1/health")
        assert response.status_code == 200
        body = response.json()
        assert body["healthy"] is True
        assert body["data_dir"] == data_dir

    @pytest.mark.asyncio
    async def test_database_lifecycle(self, data_dir):
        async with serve(data_dir) as client:
            created = await client.post("/v1/databases/app")
            again = await client.post("/v1/databases/app")
            listed = await client.get("/v1/databases")
            info = await client.get("/v1/databases/app")
            deleted = await client.delete("/v1/databases/app")
            missing = await client.get("/v1/databases/app")

        assert created.status_code == 201
        assert created.json() == {"status": "created", "version": 1}
        assert again.status_code == 200
        assert again.json()["status"] == "ready"
        assert listed.json() == {"databases": ["app"]}
        assert info.json()["containers"] == []
        assert info.json()["last_modified"] is not None
        assert deleted.json() == {"deleted": True}
        assert missing.status_code == 404
        assert missing.json()["error_code"] == "DATABASE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_containers_and_records(self, data_dir):
        base = "/v1/databases/app/containers"
        async with serve(data_dir) as client:
            await client.post("/v1/databases/app")
            created = await client.post(
                base, json={"name": "users", "indexes": [{"name": "email", "unique": True}, "city"]}
            )
            exists = await client.post(base, json={"name": "users"})
            inserted = await client.post(
                f"{base}/users/records",
                json={"records": [{"email": "a", "city": "Porto"}, {"email": "b", "city": "Porto"}]},
            )
            one = await client.post(f"{base}/users/records", json={"record": {"email": "c"}})
            selected = await client.post(
                f"{base}/users/select", json={"index": "email", "value": "b", "fields": ["city"]}
            )
            many = await client.post(
                f"{base}/users/select-many",
                json={"queries": [{"index": "email", "value": "a"}, {"index": "nope", "value": 1}]},
            )
            updated = await client.post(
                f"{base}/users/update",
                json={"index": "city", "current_value": "Porto", "new_value": "Faro"},
            )
            projected = await client.get(f"{base}/users/records", params={"fields": "city"})
            indexes = await client.get(f"{base}/users/indexes", params={"names": "email,phone"})
            deleted = await client.post(
                f"{base}/users/delete", json={"index": "city", "value": "Faro", "delete_all": True}
            )
            remaining = await client.get(f"{base}/users/records")

        assert created.status_code == 201
        assert exists.json() == {"status": "already_exists"}
        assert inserted.json() == {"keys": [1, 2]}
        assert one.json() == {"key": 3}
        assert selected.json() == {"record": {"city": "Porto"}}
        assert many.json() == {"records": [{"email": "a", "city": "Porto"}, None]}
        assert updated.json() == {"updated": 2}
        assert projected.json() == {"records": [{"city": "Faro"}, {"city": "Faro"}]}
        assert indexes.json() == {"indexes": {"email": True, "phone": False}}
        assert deleted.json() == {"deleted": 2}
        assert remaining.json() == {"records": [{"email": "c"}]}

    @pytest.mark.asyncio
    async def test_structure_update_and_drop(self, data_dir):
        base = "/v1/databases/app/containers"
        async with serve(data_dir) as client:
            await client.post("/v1/databases/app")
            await client.post(base, json={"name": "items", "indexes": ["a"]})
            await client.post(f"{base}/items/records", json={"record": {"a": 1, "c": 2}})
            patched = await client.patch(
                f"{base}/items", json={"rename": [{"oldName": "a", "newName": "b"}]}
            )
            records = await client.get(f"{base}/items/records")
            stripped = await client.post(f"{base}/items/delete-fields", json={"fields": ["c"]})
            cleared = await client.delete(f"{base}/items/records")
            dropped = await client.delete(f"{base}/items")
            absent = await client.delete(f"{base}/items")
            containers = await client.get(f"{base}")

        assert patched.json() == {"updated": True}
        assert records.json() == {"records": [{"b": 1, "c": 2}]}
        assert stripped.json() == {"touched": 1}
        assert cleared.json() == {"cleared": True}
        assert dropped.json() == {"status": "deleted"}
        assert absent.json() == {"status": "absent"}
        assert containers.json() == {"containers": []}

    @pytest.mark.asyncio
    async def test_error_statuses(self, data_dir):
        base = "/v1/databases/app/containers"
        async with serve(data_dir) as client:
            await client.post("/v1/databases/app")
            await client.post(base, json={"name": "users", "indexes": [{"name": "email", "unique": True}]})
            await client.post(f"{base}/users/records", json={"record": {"email": "a"}})

            duplicate = await client.post(f"{base}/users/records", json={"record": {"email": "a"}})
            no_container = await client.get(f"{base}/ghost/records")
            no_index = await client.post(f"{base}/users/select", json={"index": "phone", "value": 1})
            invalid = await client.post(f"{base}/users/records", json={"records": []})
            bad_json = await client.post(
                f"{base}/users/select",
                content=b"{not json",
                headers={"Content-Type": "application/json"},
            )
            missing_field = await client.post(f"{base}/users/select", json={"value": 1})
            schema = await client.patch(
                f"{base}/users", json={"rename": [{"old_name": "zzz", "new_name": "b"}]}
            )

        assert duplicate.status_code == 409
        assert duplicate.json()["error_code"] == "CONSTRAINT_VIOLATION"
        assert no_container.status_code == 404
        assert no_container.json()["details"] == {"container": "ghost"}
        assert no_index.status_code == 404
        assert no_index.json()["error_code"] == "NO_SUCH_INDEX"
        assert invalid.status_code == 400
        assert invalid.json()["error_code"] == "INVALID_ARGUMENT"
        assert bad_json.status_code == 400
        assert missing_field.status_code == 400
        assert schema.status_code == 500
        assert schema.json()["error_code"] == "SCHEMA_UPDATE_FAILED"
