"""
Schemareg Server - a versioned schema registry service.

This package stores schema definitions, gives each distinct schema a
registry-wide integer id, and keeps an append-only version history per
subject that references those ids.

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌──────────────────────┐
    │   Client    │────▶│    HTTP     │────▶│ RegistryCoordinator  │
    │             │     │  (aiohttp)  │     │  (register path)     │
    └─────────────┘     └──────┬──────┘     └──────────┬───────────┘
                               │                       │
                               ▼                       ▼
                        ┌─────────────┐     ┌──────────────────────┐
                        │RegistryQuery│────▶│ SchemaStore          │
                        │  (reads)    │     │ SubjectLedger        │
                        └─────────────┘     └──────────┬───────────┘
                                                       │
                                                       ▼
                                            ┌──────────────────────┐
                                            │ SQLite / in-memory   │
                                            └──────────────────────┘

Invariants:
    - A schema id identifies exactly one canonical content, registry-wide
    - Schema ids start at 1 and are never reused or reassigned
    - Subject versions start at 1, have no gaps and are never mutated
    - Re-registering the latest content of a subject creates nothing new

How to change safely:
    - Canonicalization changes alter fingerprints; existing data must be
      re-imported through a snapshot restore
    - New store backends must implement the SchemaStore and SubjectLedger
      protocols and pass the shared store tests
"""

from ._version import __version__

__all__ = ["__version__"]
