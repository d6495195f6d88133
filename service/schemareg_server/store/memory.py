"""
In-memory registry stores.

This module provides memory-only implementations of SchemaStore and
SubjectLedger for:
- Unit tests
- Local development without a data directory
- Ephemeral registries seeded from a snapshot at startup

Invariants:
    - All data is lost on process exit
    - Same ordering and dedup guarantees as the SQLite backend
    - Safe for concurrent use from multiple coroutines

How to change safely:
    - Keep interface compatible with the SchemaStore/SubjectLedger protocols
    - Allocation must stay inside the store lock
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from ..config import DedupMode
from ..errors import (
    StorageUnavailableError,
    UnknownIdError,
    UnknownSubjectError,
    UnknownVersionError,
    VersionLimitExceededError,
)
from ..schema.types import SchemaContent, VersionEntry

logger = logging.getLogger(__name__)


class InMemorySchemaStore:
    """In-memory implementation of SchemaStore.

    Thread safety:
        Allocation is guarded by one asyncio lock, which serializes
        check-then-create for all callers. Reads take no lock.

    Example:
        >>> store = InMemorySchemaStore()
        >>> await store.open()
        >>> schema_id = await store.get_or_create(content)
    """

    def __init__(self) -> None:
        self._by_id: Dict[int, SchemaContent] = {}
        self._by_content: Dict[SchemaContent, int] = {}
        self._open = False
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True
        logger.debug("InMemorySchemaStore opened")

    async def close(self) -> None:
        self._open = False
        logger.debug("InMemorySchemaStore closed")

    def _check_open(self) -> None:
        if not self._open:
            raise StorageUnavailableError("Schema store is not open", backend="memory")

    async def get_or_create(self, content: SchemaContent) -> int:
        self._check_open()

        async with self._lock:
            existing = self._by_content.get(content)
            if existing is not None:
                return existing

            schema_id = len(self._by_id) + 1
            self._by_id[schema_id] = content
            self._by_content[content] = schema_id

        logger.debug(
            "Allocated schema id",
            extra={"schema_id": schema_id, "fingerprint": content.fingerprint},
        )
        return schema_id

    async def get(self, schema_id: int) -> SchemaContent:
        self._check_open()
        try:
            return self._by_id[schema_id]
        except KeyError:
            raise UnknownIdError(schema_id) from None

    async def lookup(self, content: SchemaContent) -> Optional[int]:
        self._check_open()
        return self._by_content.get(content)

    async def schemas(self) -> List[tuple[int, SchemaContent]]:
        self._check_open()
        return sorted(self._by_id.items())

    async def count(self) -> int:
        self._check_open()
        return len(self._by_id)


class InMemorySubjectLedger:
    """In-memory implementation of SubjectLedger.

    Each subject gets its own asyncio lock on first append, so appends to
    different subjects never wait on each other.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, List[VersionEntry]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True
        logger.debug("InMemorySubjectLedger opened")

    async def close(self) -> None:
        self._open = False
        logger.debug("InMemorySubjectLedger closed")

    def _check_open(self) -> None:
        if not self._open:
            raise StorageUnavailableError("Subject ledger is not open", backend="memory")

    def _lock_for(self, subject: str) -> asyncio.Lock:
        lock = self._locks.get(subject)
        if lock is None:
            lock = self._locks[subject] = asyncio.Lock()
        return lock

    def _history(self, subject: str) -> List[VersionEntry]:
        history = self._entries.get(subject)
        if not history:
            raise UnknownSubjectError(subject)
        return history

    async def latest(self, subject: str) -> Optional[VersionEntry]:
        self._check_open()
        history = self._entries.get(subject)
        return history[-1] if history else None

    async def all_versions(self, subject: str) -> List[int]:
        self._check_open()
        return [entry.version for entry in self._history(subject)]

    async def append(self, subject: str, schema_id: int) -> VersionEntry:
        self._check_open()

        async with self._lock_for(subject):
            history = self._entries.setdefault(subject, [])
            entry = VersionEntry(
                subject=subject,
                version=history[-1].version + 1 if history else 1,
                schema_id=schema_id,
            )
            history.append(entry)

        return entry

    async def append_if_new(
        self,
        subject: str,
        schema_id: int,
        dedup_mode: DedupMode = DedupMode.LATEST,
        max_versions: int = 0,
    ) -> tuple[VersionEntry, bool]:
        self._check_open()

        async with self._lock_for(subject):
            history = self._entries.get(subject, [])
            if dedup_mode == DedupMode.ANY:
                previous = next((e for e in history if e.schema_id == schema_id), None)
            else:
                previous = history[-1] if history and history[-1].schema_id == schema_id else None
            if previous is not None:
                return previous, False

            if max_versions and len(history) >= max_versions:
                raise VersionLimitExceededError(subject, max_versions)

            entry = VersionEntry(subject=subject, version=len(history) + 1, schema_id=schema_id)
            self._entries.setdefault(subject, []).append(entry)

        return entry, True

    async def entry_at(self, subject: str, version: int) -> VersionEntry:
        self._check_open()
        history = self._history(subject)
        # Versions are gapless from 1, so version n lives at index n - 1
        if version < 1 or version > len(history):
            raise UnknownVersionError(subject, version)
        return history[version - 1]

    async def entries(self, subject: str) -> List[VersionEntry]:
        self._check_open()
        return list(self._history(subject))

    async def subjects(self) -> List[str]:
        self._check_open()
        return sorted(self._entries)

    async def find(self, subject: str, schema_id: int) -> Optional[VersionEntry]:
        self._check_open()
        for entry in self._entries.get(subject, ()):
            if entry.schema_id == schema_id:
                return entry
        return None

    async def references(self, schema_id: int) -> List[VersionEntry]:
        self._check_open()
        return [
            entry
            for subject in sorted(self._entries)
            for entry in self._entries[subject]
            if entry.schema_id == schema_id
        ]
