"""
HTTP server implementation for the schema registry.

This module maps the registry operations onto a REST API:

    POST /subjects/{subject}/versions           register a schema -> {"id"}
    POST /subjects/{subject}                    look up a schema in a subject
    GET  /subjects                              list subjects
    GET  /subjects/{subject}/versions           list versions
    GET  /subjects/{subject}/versions/{v}       {id, name, version, schema}
    GET  /subjects/{subject}/versions/{v}/schema  rendered schema only
    GET  /schemas/ids/{id}                      {"schema"}
    GET  /schemas/ids/{id}/schema               rendered schema only
    GET  /schemas/ids/{id}/versions             [{subject, version}]
    GET  /health                                store liveness

{v} is a version number, "latest" or -1.

Invariants:
    - Handlers hold no registry state; all of it lives in the stores
    - Registry errors map to status codes by error code only
    - JSON request/response format

How to change safely:
    - Add endpoints, don't change the shape of existing responses
    - Keep ERROR_STATUS in sync with errors.py
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any, Optional, Union

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..config import HttpConfig
from ..errors import RegistryError
from ..registry.coordinator import RegistryCoordinator
from ..registry.query import RegistryQueries
from ..schema.types import SchemaContent, SchemaFormat

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "MALFORMED_SCHEMA": 422,
    "INVALID_SUBJECT": 422,
    "INVALID_VERSION": 422,
    "INVALID_REQUEST": 422,
    "VERSION_LIMIT_EXCEEDED": 422,
    "UNKNOWN_SUBJECT": 404,
    "UNKNOWN_VERSION": 404,
    "UNKNOWN_ID": 404,
    "UNKNOWN_SCHEMA": 404,
    "STORAGE_UNAVAILABLE": 503,
}


class RegisterSchemaRequest(BaseModel):
    """Body of POST /subjects/{subject}/versions and POST /subjects/{subject}.

    "schema" is normally schema text; a JSON array or object is accepted
    too and serialized before canonicalization.
    """

    model_config = ConfigDict(populate_by_name=True)

    schema_text: Union[str, list[Any], dict[str, Any]] = Field(alias="schema")
    schema_type: Optional[str] = Field(default=None, alias="schemaType")

    def raw_schema(self) -> str:
        if isinstance(self.schema_text, str):
            return self.schema_text
        return json.dumps(self.schema_text)


def _json_error(status: int, message: str, code: str) -> web.Response:
    return web.json_response({"error": message, "error_code": code}, status=status)


def create_http_app(
    coordinator: RegistryCoordinator,
    queries: RegistryQueries,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for the registry.

    Args:
        coordinator: Registration entry point
        queries: Read-only lookups
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application()

    # Add routes
    app.router.add_get("/subjects", lambda r: handle_list_subjects(r, queries))
    app.router.add_post("/subjects/{subject}", lambda r: handle_lookup(r, queries))
    app.router.add_post(
        "/subjects/{subject}/versions", lambda r: handle_register(r, coordinator)
    )
    app.router.add_get("/subjects/{subject}/versions", lambda r: handle_list_versions(r, queries))
    app.router.add_get(
        "/subjects/{subject}/versions/{version}", lambda r: handle_get_version(r, queries)
    )
    app.router.add_get(
        "/subjects/{subject}/versions/{version}/schema",
        lambda r: handle_get_version_schema(r, queries),
    )
    app.router.add_get(r"/schemas/ids/{schema_id:\d+}", lambda r: handle_get_schema(r, queries))
    app.router.add_get(
        r"/schemas/ids/{schema_id:\d+}/schema", lambda r: handle_get_raw_schema(r, queries)
    )
    app.router.add_get(
        r"/schemas/ids/{schema_id:\d+}/versions", lambda r: handle_get_schema_versions(r, queries)
    )
    app.router.add_get("/health", lambda r: handle_health(r, coordinator))

    def apply_cors(request: web.Request, headers: Any) -> None:
        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            headers["Access-Control-Allow-Origin"] = origin
        headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
        headers["Access-Control-Allow-Headers"] = "Content-Type"

    # Add CORS middleware
    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                apply_cors(request, e.headers)
                raise

        apply_cors(request, response.headers)
        return response

    app.middlewares.append(cors_middleware)

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except RegistryError as e:
            status = ERROR_STATUS.get(e.code, 500)
            if status >= 500:
                logger.warning(f"Registry unavailable: {e.message}", extra=e.details)
            return _json_error(status, e.message, e.code)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return _json_error(500, str(e), "INTERNAL")

    app.middlewares.insert(0, error_middleware)

    return app


async def _parse_register_body(request: web.Request) -> RegisterSchemaRequest:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "Invalid JSON body", "error_code": "INVALID_REQUEST"}),
            content_type="application/json",
        )
    try:
        return RegisterSchemaRequest.model_validate(body)
    except ValidationError as e:
        raise web.HTTPUnprocessableEntity(
            text=json.dumps({"error": f"Invalid request body: {e}", "error_code": "INVALID_REQUEST"}),
            content_type="application/json",
        )


def _render(content: SchemaContent) -> web.Response:
    if content.format is SchemaFormat.PROTOBUF:
        return web.Response(text=content.canonical, content_type="text/plain")
    return web.Response(text=content.canonical, content_type="application/json")


async def handle_register(request: web.Request, coordinator: RegistryCoordinator) -> web.Response:
    """Handle POST /subjects/{subject}/versions - Register a schema."""
    subject = request.match_info["subject"]
    body = await _parse_register_body(request)

    schema_id = await coordinator.register(subject, body.raw_schema(), body.schema_type)
    return web.json_response({"id": schema_id})


async def handle_lookup(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle POST /subjects/{subject} - Check whether a subject holds a schema."""
    subject = request.match_info["subject"]
    body = await _parse_register_body(request)

    registered = await queries.lookup_schema(subject, body.raw_schema(), body.schema_type)
    return web.json_response(registered.to_dict())


async def handle_list_subjects(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle GET /subjects - List subjects."""
    return web.json_response(await queries.list_subjects())


async def handle_list_versions(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle GET /subjects/{subject}/versions - List versions of a subject."""
    subject = request.match_info["subject"]
    return web.json_response(await queries.list_versions(subject))


async def handle_get_version(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle GET /subjects/{subject}/versions/{version} - Get a version entry."""
    subject = request.match_info["subject"]
    version = request.match_info["version"]

    registered = await queries.get_entry(subject, version)
    return web.json_response(registered.to_dict())


async def handle_get_version_schema(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle GET /subjects/{subject}/versions/{version}/schema - Get rendered schema."""
    subject = request.match_info["subject"]
    version = request.match_info["version"]

    registered = await queries.get_entry(subject, version)
    return _render(registered.content)


async def handle_get_schema(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle GET /schemas/ids/{schema_id} - Get schema by global id."""
    content = await queries.get_content_by_id(int(request.match_info["schema_id"]))
    return web.json_response(content.to_dict())


async def handle_get_raw_schema(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle GET /schemas/ids/{schema_id}/schema - Get rendered schema by id."""
    content = await queries.get_content_by_id(int(request.match_info["schema_id"]))
    return _render(content)


async def handle_get_schema_versions(request: web.Request, queries: RegistryQueries) -> web.Response:
    """Handle GET /schemas/ids/{schema_id}/versions - Subject versions using an id."""
    entries = await queries.get_versions_for_id(int(request.match_info["schema_id"]))
    return web.json_response([entry.to_dict() for entry in entries])


async def handle_health(request: web.Request, coordinator: RegistryCoordinator) -> web.Response:
    """Handle GET /health - Health check."""
    healthy = coordinator.store.is_open and coordinator.ledger.is_open
    status = 200 if healthy else 503
    return web.json_response({"healthy": healthy}, status=status)


async def start_http_server(app: web.Application, config: HttpConfig) -> web.AppRunner:
    """Start serving app; the caller owns the returned runner.

    Args:
        app: Application from create_http_app()
        config: HTTP server configuration

    Returns:
        Running AppRunner (call cleanup() to stop)
    """
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.host, config.port)
    await site.start()

    logger.info(f"HTTP server running on http://{config.host}:{config.port}")
    return runner
