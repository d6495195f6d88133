"""
API module for the schema registry.

This module provides the external HTTP interface. Handlers translate
requests into RegistryCoordinator and RegistryQueries calls and map
RegistryError codes to HTTP statuses.

Invariants:
    - register is the only endpoint that writes
    - Error bodies are always {"error": ..., "error_code": ...}

How to change safely:
    - Add new endpoints, don't modify existing ones
    - Keep response shapes stable for existing clients
"""

from .http_server import RegisterSchemaRequest, create_http_app, start_http_server

__all__ = [
    "RegisterSchemaRequest",
    "create_http_app",
    "start_http_server",
]
