"""
Registry module - registration protocol and read projections.

This module handles:
- RegistryCoordinator: the register() write path
- RegistryQueries: read-only lookups by subject, version and id
- Snapshot export and replay

Invariants:
    - register() is the only operation that mutates registry state
    - Global id assignment happens before, and independently of, subject
      version bookkeeping
    - Idempotent re-registration creates no state

How to change safely:
    - Keep reads free of coordinator locks
    - Verify idempotence and concurrency with the coordinator tests after
      any change to the registration order
"""

from .coordinator import RegistryCoordinator
from .query import LATEST, RegistryQueries, parse_version
from .snapshot import RestoreStats, export_snapshot, load_snapshot, restore_snapshot

__all__ = [
    "RegistryCoordinator",
    "RegistryQueries",
    "LATEST",
    "parse_version",
    "RestoreStats",
    "export_snapshot",
    "restore_snapshot",
    "load_snapshot",
]
