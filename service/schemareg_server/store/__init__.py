"""
Storage module for the schema registry.

This module provides the two pieces of registry state behind pluggable
backends:
- SchemaStore: content <-> global id, the single dedup authority
- SubjectLedger: per-subject append-only version history

Backends:
- SQLite (default, durable)
- In-memory (tests, ephemeral registries)

Invariants:
    - The schema store and each subject's ledger are locked independently
    - Writes are atomic; failures leave no partial rows
    - State survives restart (SQLite) with every invariant intact

How to change safely:
    - New backends must implement both protocols
    - Run the shared store tests against every backend
"""

from .base import SchemaStore, SubjectLedger, create_stores
from .memory import InMemorySchemaStore, InMemorySubjectLedger
from .sqlite import SqliteDatabase, SqliteSchemaStore, SqliteSubjectLedger

__all__ = [
    # Protocols
    "SchemaStore",
    "SubjectLedger",
    # Factory
    "create_stores",
    # Implementations
    "InMemorySchemaStore",
    "InMemorySubjectLedger",
    "SqliteDatabase",
    "SqliteSchemaStore",
    "SqliteSubjectLedger",
]
