"""
Base protocols for registry storage.

The registry keeps two independent pieces of durable state:
- SchemaStore: canonical content <-> global schema id, with the id
  allocation counter
- SubjectLedger: per-subject append-only log of (version, schema_id)

Both are defined as protocols so that the coordinator and query layer
work unchanged over the in-memory and SQLite backends.

Invariants:
    - get_or_create() allocates at most one id per distinct content, even
      under concurrent callers
    - Ids are allocated as highest + 1, starting at 1
    - append() assigns version = highest for the subject + 1, starting at 1
    - append_if_new() reads the dedup target and appends in one atomic step,
      so two writers never both append the same content
    - A failed write leaves no partial state behind
    - Every operation on a closed store raises StorageUnavailableError

How to change safely:
    - Protocol changes require updating every implementation
    - New backends must pass tests/unit/test_stores.py unchanged
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable
import logging

from ..config import DedupMode, StorageBackend, StorageConfig
from ..schema.types import SchemaContent, VersionEntry

logger = logging.getLogger(__name__)


@runtime_checkable
class SchemaStore(Protocol):
    """Protocol for the global schema store.

    The store is the single authority mapping canonical content to global
    schema ids. Check-then-create in get_or_create() is one critical
    section; no caller can observe content without its id or allocate a
    second id for content that already has one.

    Example:
        >>> store = InMemorySchemaStore()
        >>> await store.open()
        >>> await store.get_or_create(canonicalize('"string"'))
        1
    """

    @abstractmethod
    async def open(self) -> None:
        """Open the store.

        Raises:
            StorageUnavailableError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the store and release resources."""
        ...

    @abstractmethod
    async def get_or_create(self, content: SchemaContent) -> int:
        """Return the id of content, allocating the next id if it is new.

        The mapping is persisted before the id is returned.

        Raises:
            StorageUnavailableError: If the write cannot be committed
        """
        ...

    @abstractmethod
    async def get(self, schema_id: int) -> SchemaContent:
        """Return the content for an id.

        Raises:
            UnknownIdError: If no content has this id
        """
        ...

    @abstractmethod
    async def lookup(self, content: SchemaContent) -> Optional[int]:
        """Return the id of content, or None. Never allocates."""
        ...

    @abstractmethod
    async def schemas(self) -> list[tuple[int, SchemaContent]]:
        """Return every (id, content) pair in ascending id order."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Number of distinct contents stored (equal to the highest id)."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the store is open."""
        ...


@runtime_checkable
class SubjectLedger(Protocol):
    """Protocol for the per-subject version ledger.

    Each subject has its own append-only sequence of VersionEntry.
    Appends to one subject are linearizable; appends to different subjects
    do not contend with each other.
    """

    @abstractmethod
    async def open(self) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def latest(self, subject: str) -> Optional[VersionEntry]:
        """Return the highest version of subject, or None if unknown."""
        ...

    @abstractmethod
    async def all_versions(self, subject: str) -> list[int]:
        """Return the subject's version numbers in ascending order.

        Raises:
            UnknownSubjectError: If subject has never been registered
        """
        ...

    @abstractmethod
    async def append(self, subject: str, schema_id: int) -> VersionEntry:
        """Append a new version pointing at schema_id.

        Returns:
            The new entry, with version = previous highest + 1
        """
        ...

    @abstractmethod
    async def append_if_new(
        self,
        subject: str,
        schema_id: int,
        dedup_mode: DedupMode = DedupMode.LATEST,
        max_versions: int = 0,
    ) -> tuple[VersionEntry, bool]:
        """Append schema_id unless the subject's dedup target already holds it.

        The dedup read, the version cap check and the append form one
        critical section per subject, across processes for durable backends.

        Args:
            subject: Subject name
            schema_id: Global schema id to register
            dedup_mode: LATEST matches only the latest version, ANY matches
                the earliest version holding schema_id
            max_versions: Version cap for the subject (0 = unlimited)

        Returns:
            Tuple of (entry, created); created is False when the existing
            entry was returned instead of appending

        Raises:
            VersionLimitExceededError: If a new version would exceed max_versions
        """
        ...

    @abstractmethod
    async def entry_at(self, subject: str, version: int) -> VersionEntry:
        """Return one version of a subject.

        Raises:
            UnknownSubjectError: If subject has never been registered
            UnknownVersionError: If subject has no such version
        """
        ...

    @abstractmethod
    async def entries(self, subject: str) -> list[VersionEntry]:
        """Return the subject's full history in version order.

        Raises:
            UnknownSubjectError: If subject has never been registered
        """
        ...

    @abstractmethod
    async def subjects(self) -> list[str]:
        """Return all subject names, sorted."""
        ...

    @abstractmethod
    async def find(self, subject: str, schema_id: int) -> Optional[VersionEntry]:
        """Return the earliest version of subject that points at schema_id."""
        ...

    @abstractmethod
    async def references(self, schema_id: int) -> list[VersionEntry]:
        """Return every entry pointing at schema_id, by subject then version."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...


def create_stores(config: StorageConfig) -> tuple[SchemaStore, SubjectLedger]:
    """Factory function to create the registry stores from configuration.

    Args:
        config: Storage configuration

    Returns:
        Tuple of (schema store, subject ledger) sharing one backend

    Raises:
        ValueError: If backend is not supported
    """
    from .memory import InMemorySchemaStore, InMemorySubjectLedger
    from .sqlite import SqliteDatabase, SqliteSchemaStore, SqliteSubjectLedger

    if config.backend == StorageBackend.MEMORY:
        logger.warning("Using in-memory storage; registry state is lost on exit")
        return InMemorySchemaStore(), InMemorySubjectLedger()
    elif config.backend == StorageBackend.SQLITE:
        database = SqliteDatabase(
            config.db_path,
            wal_mode=config.wal_mode,
            busy_timeout_ms=config.busy_timeout_ms,
        )
        return SqliteSchemaStore(database), SqliteSubjectLedger(database)
    else:
        raise ValueError(f"Unsupported storage backend: {config.backend}")
