"""
Integration tests for the HTTP API over SQLite stores.

Tests cover:
- Registration and idempotence over HTTP
- Subject, version and id lookups
- Error code to status mapping
- CORS and health endpoints
"""

import json
import os
import tempfile

import pytest
from aiohttp import test_utils

from service.schemareg_server.api import create_http_app
from service.schemareg_server.config import HttpConfig
from service.schemareg_server.registry import RegistryCoordinator, RegistryQueries
from service.schemareg_server.store import SqliteDatabase, SqliteSchemaStore, SqliteSubjectLedger

USER_AVRO = {
    "type": "record",
    "name": "User",
    "namespace": "com.example",
    "fields": [{"name": "id", "type": "long"}],
}


class TestHttpApi:
    """End-to-end tests for the registry REST API."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def registry(self, data_dir):
        database = SqliteDatabase(os.path.join(data_dir, "registry.db"))
        store, ledger = SqliteSchemaStore(database), SqliteSubjectLedger(database)
        await store.open()
        await ledger.open()
        yield RegistryCoordinator(store, ledger), RegistryQueries(store, ledger)
        await ledger.close()
        await store.close()

    @pytest.fixture
    async def client(self, registry):
        coordinator, queries = registry
        app = create_http_app(coordinator, queries, HttpConfig(cors_origins=("https://ui.example",)))
        async with test_utils.TestClient(test_utils.TestServer(app)) as client:
            yield client

    async def _register(self, client, subject, schema, schema_type=None):
        body = {"schema": schema}
        if schema_type:
            body["schemaType"] = schema_type
        return await client.post(f"/subjects/{subject}/versions", json=body)

    @pytest.mark.asyncio
    async def test_register_and_read_back(self, client):
        resp = await self._register(client, "subject1", '["string"]')
        assert resp.status == 200
        assert await resp.json() == {"id": 1}

        resp = await self._register(client, "subject1", '["string"]')
        assert await resp.json() == {"id": 1}

        resp = await client.get("/subjects/subject1/versions")
        assert await resp.json() == [1]

        resp = await self._register(client, "subject2", '["string"]')
        assert await resp.json() == {"id": 1}
        resp = await self._register(client, "subject2", '["long"]')
        assert await resp.json() == {"id": 2}

        resp = await client.get("/subjects/subject2/versions/2")
        assert await resp.json() == {"id": 2, "name": "subject2", "version": 2, "schema": '["long"]'}

        resp = await client.get("/subjects/subject2/versions/2/schema")
        assert resp.status == 200
        assert await resp.text() == '["long"]'

        resp = await client.get("/subjects")
        assert await resp.json() == ["subject1", "subject2"]

    @pytest.mark.asyncio
    async def test_schema_as_json_object(self, client):
        """The schema field may be a JSON object instead of a string."""
        resp = await self._register(client, "users-value", USER_AVRO)
        assert await resp.json() == {"id": 1}

        resp = await self._register(client, "users-value", json.dumps(USER_AVRO, indent=4))
        assert await resp.json() == {"id": 1}

    @pytest.mark.asyncio
    async def test_latest_version(self, client):
        await self._register(client, "subject1", '"string"')
        await self._register(client, "subject1", '"long"')

        for version in ("latest", "-1"):
            resp = await client.get(f"/subjects/subject1/versions/{version}")
            assert (await resp.json())["version"] == 2

    @pytest.mark.asyncio
    async def test_schema_by_id(self, client):
        await self._register(client, "events", '{"type": "object", "title": "E"}', "JSON")
        await self._register(client, "events-copy", '{"title": "E", "type": "object"}', "JSON")

        resp = await client.get("/schemas/ids/1")
        assert await resp.json() == {"schema": '{"title":"E","type":"object"}', "schemaType": "JSON"}

        resp = await client.get("/schemas/ids/1/schema")
        assert resp.content_type == "application/json"
        assert await resp.text() == '{"title":"E","type":"object"}'

        resp = await client.get("/schemas/ids/1/versions")
        assert await resp.json() == [
            {"subject": "events", "version": 1},
            {"subject": "events-copy", "version": 1},
        ]

    @pytest.mark.asyncio
    async def test_protobuf_rendered_as_text(self, client):
        await self._register(client, "proto", 'syntax = "proto3";\nmessage A { int32 x = 1; }', "PROTOBUF")

        resp = await client.get("/schemas/ids/1/schema")

        assert resp.content_type == "text/plain"
        assert await resp.text() == 'syntax="proto3";message A{int32 x=1;}'

    @pytest.mark.asyncio
    async def test_lookup(self, client):
        await self._register(client, "subject1", '"string"')

        resp = await client.post("/subjects/subject1", json={"schema": '{"type": "string"}'})
        assert resp.status == 200
        assert await resp.json() == {"id": 1, "name": "subject1", "version": 1, "schema": '"string"'}

        resp = await client.post("/subjects/subject1", json={"schema": '"long"'})
        assert resp.status == 404
        assert (await resp.json())["error_code"] == "UNKNOWN_SCHEMA"

        # Lookup never registers
        resp = await client.get("/schemas/ids/2")
        assert resp.status == 404

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path,status,code",
        [
            ("/subjects/missing/versions", 404, "UNKNOWN_SUBJECT"),
            ("/subjects/missing/versions/1", 404, "UNKNOWN_SUBJECT"),
            ("/subjects/subject1/versions/5", 404, "UNKNOWN_VERSION"),
            ("/subjects/subject1/versions/0", 422, "INVALID_VERSION"),
            ("/subjects/subject1/versions/abc/schema", 422, "INVALID_VERSION"),
            ("/schemas/ids/99", 404, "UNKNOWN_ID"),
            ("/schemas/ids/99/versions", 404, "UNKNOWN_ID"),
        ],
    )
    async def test_read_errors(self, client, path, status, code):
        await self._register(client, "subject1", '"string"')

        resp = await client.get(path)

        assert resp.status == status
        body = await resp.json()
        assert body["error_code"] == code
        assert body["error"]

    @pytest.mark.asyncio
    async def test_register_errors(self, client):
        resp = await self._register(client, "subject1", '{"type": "record"}')
        assert resp.status == 422
        assert (await resp.json())["error_code"] == "MALFORMED_SCHEMA"

        resp = await self._register(client, "subject1", '"string"', "XML")
        assert resp.status == 422
        assert (await resp.json())["error_code"] == "MALFORMED_SCHEMA"

        resp = await self._register(client, "%20", '"string"')
        assert resp.status == 422
        assert (await resp.json())["error_code"] == "INVALID_SUBJECT"

        resp = await client.post("/subjects/subject1/versions", json={"schemaType": "AVRO"})
        assert resp.status == 422
        assert (await resp.json())["error_code"] == "INVALID_REQUEST"

        resp = await client.post("/subjects/subject1/versions", data="not json")
        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_REQUEST"

        resp = await client.post(
            "/subjects/subject1/versions",
            data=b"\xff\xfe",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status == 400
        assert (await resp.json())["error_code"] == "INVALID_REQUEST"

        resp = await client.get("/subjects")
        assert await resp.json() == []

    @pytest.mark.asyncio
    async def test_storage_unavailable(self, client, registry):
        coordinator, _ = registry
        await coordinator.store.close()

        resp = await self._register(client, "subject1", '"string"')
        assert resp.status == 503
        assert (await resp.json())["error_code"] == "STORAGE_UNAVAILABLE"

        resp = await client.get("/health")
        assert resp.status == 503
        assert await resp.json() == {"healthy": False}

    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")

        assert resp.status == 200
        assert await resp.json() == {"healthy": True}

    @pytest.mark.asyncio
    async def test_cors_headers(self, client):
        resp = await client.get("/subjects", headers={"Origin": "https://ui.example"})
        assert resp.headers["Access-Control-Allow-Origin"] == "https://ui.example"

        resp = await client.options("/subjects", headers={"Origin": "https://ui.example"})
        assert resp.status == 200
        assert "POST" in resp.headers["Access-Control-Allow-Methods"]

        resp = await client.get("/subjects", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers
