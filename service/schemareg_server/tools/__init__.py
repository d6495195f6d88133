"""
CLI tools for registry administration.

This module provides command-line tools for:
- canonicalize: Inspect how a schema file will be deduplicated
- snapshot / restore: Export and replay registry state
- register: Register schemas without a running server

Invariants:
    - Tools work offline (no running server required)
    - restore only ever writes into an empty registry
"""

from .registry_cli import RegistryCLI

__all__ = ["RegistryCLI"]
