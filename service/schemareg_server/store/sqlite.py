"""
SQLite registry stores.

This module keeps registry state in a single SQLite file shared by the
schema store and the subject ledger.

Invariants:
    - Id allocation and version append each run in one BEGIN IMMEDIATE
      transaction, so check-then-write is atomic across processes too
    - append_if_new() checks the dedup target and the version cap inside
      that same transaction
    - fingerprint is UNIQUE, so one content can never hold two ids
    - (subject, version) is the primary key, so a version cannot be
      written twice
    - Any sqlite3.Error rolls back and surfaces as StorageUnavailableError

How to change safely:
    - Schema migrations must be backward compatible
    - Bump SCHEMA_VERSION and add an upgrade step for table changes
    - Use transactions for all write operations

Table schema:
    schemas:
        - schema_id INTEGER PRIMARY KEY
        - fingerprint TEXT UNIQUE (sha256 over format + canonical)
        - format TEXT
        - canonical TEXT
        - created_at INTEGER (Unix ms)

    subject_versions:
        - subject TEXT
        - version INTEGER
        - schema_id INTEGER
        - created_at INTEGER (Unix ms)
        - PRIMARY KEY (subject, version)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

from ..config import DedupMode
from ..errors import (
    StorageUnavailableError,
    UnknownIdError,
    UnknownSubjectError,
    UnknownVersionError,
    VersionLimitExceededError,
)
from ..schema.types import SchemaContent, SchemaFormat, VersionEntry

logger = logging.getLogger(__name__)


class SqliteDatabase:
    """Connection factory for the registry SQLite file.

    Each operation opens its own connection; SQLite handles concurrent
    readers via WAL mode and serializes writers via BEGIN IMMEDIATE.

    Example:
        >>> db = SqliteDatabase("/var/lib/schemareg/registry.db")
        >>> db.create_schema()
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection in autocommit mode.

        Yields:
            SQLite connection

        Raises:
            StorageUnavailableError: On any SQLite failure
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except (sqlite3.Error, OSError) as e:
            raise StorageUnavailableError(
                f"Cannot open registry database {self.path}: {e}", backend="sqlite"
            ) from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Registry database error: {e}", backend="sqlite") from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection inside a BEGIN IMMEDIATE write transaction."""
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def create_schema(self) -> None:
        """Create tables if they don't exist."""
        with self.connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS schemas (
                    schema_id INTEGER PRIMARY KEY,
                    fingerprint TEXT NOT NULL UNIQUE,
                    format TEXT NOT NULL,
                    canonical TEXT NOT NULL,
                    created_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS subject_versions (
                    subject TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    schema_id INTEGER NOT NULL,
                    created_at INTEGER NOT NULL,
                    PRIMARY KEY (subject, version)
                );

                CREATE INDEX IF NOT EXISTS idx_subject_versions_schema
                    ON subject_versions(schema_id);

                INSERT OR IGNORE INTO schema_version (version, applied_at)
                VALUES (1, strftime('%s', 'now') * 1000);
            """)


def _content_from_row(row: sqlite3.Row) -> SchemaContent:
    return SchemaContent(canonical=row["canonical"], format=SchemaFormat(row["format"]))


def _entry_from_row(row: sqlite3.Row) -> VersionEntry:
    return VersionEntry(subject=row["subject"], version=row["version"], schema_id=row["schema_id"])


class SqliteSchemaStore:
    """SQLite implementation of SchemaStore.

    Ids are allocated as MAX(schema_id) + 1 inside the same write
    transaction that checks the fingerprint, so concurrent writers in any
    process agree on one id per content.
    """

    def __init__(self, database: SqliteDatabase) -> None:
        self._db = database
        self._open = False
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._db.create_schema()
        self._open = True
        logger.info(f"Opened schema store at {self._db.path}")

    async def close(self) -> None:
        self._open = False

    def _check_open(self) -> None:
        if not self._open:
            raise StorageUnavailableError("Schema store is not open", backend="sqlite")

    async def get_or_create(self, content: SchemaContent) -> int:
        self._check_open()
        fingerprint = content.fingerprint

        async with self._lock:
            with self._db.transaction() as conn:
                row = conn.execute(
                    "SELECT schema_id FROM schemas WHERE fingerprint = ?",
                    (fingerprint,),
                ).fetchone()
                if row is not None:
                    return row["schema_id"]

                schema_id = conn.execute(
                    "SELECT COALESCE(MAX(schema_id), 0) + 1 FROM schemas"
                ).fetchone()[0]
                conn.execute(
                    """
                    INSERT INTO schemas (schema_id, fingerprint, format, canonical, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        schema_id,
                        fingerprint,
                        content.format.value,
                        content.canonical,
                        int(time.time() * 1000),
                    ),
                )

        logger.debug(
            "Allocated schema id",
            extra={"schema_id": schema_id, "fingerprint": fingerprint},
        )
        return schema_id

    async def get(self, schema_id: int) -> SchemaContent:
        self._check_open()
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT format, canonical FROM schemas WHERE schema_id = ?",
                (schema_id,),
            ).fetchone()
        if row is None:
            raise UnknownIdError(schema_id)
        return _content_from_row(row)

    async def lookup(self, content: SchemaContent) -> Optional[int]:
        self._check_open()
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT schema_id FROM schemas WHERE fingerprint = ?",
                (content.fingerprint,),
            ).fetchone()
        return row["schema_id"] if row else None

    async def schemas(self) -> list[tuple[int, SchemaContent]]:
        self._check_open()
        with self._db.connection() as conn:
            rows = conn.execute(
                "SELECT schema_id, format, canonical FROM schemas ORDER BY schema_id"
            ).fetchall()
        return [(row["schema_id"], _content_from_row(row)) for row in rows]

    async def count(self) -> int:
        self._check_open()
        with self._db.connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM schemas").fetchone()[0]


class SqliteSubjectLedger:
    """SQLite implementation of SubjectLedger.

    Appends read MAX(version) and insert the next row in one write
    transaction; the (subject, version) primary key rejects any duplicate.
    """

    def __init__(self, database: SqliteDatabase) -> None:
        self._db = database
        self._open = False
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._db.create_schema()
        self._open = True
        logger.info(f"Opened subject ledger at {self._db.path}")

    async def close(self) -> None:
        self._open = False

    def _check_open(self) -> None:
        if not self._open:
            raise StorageUnavailableError("Subject ledger is not open", backend="sqlite")

    def _lock_for(self, subject: str) -> asyncio.Lock:
        lock = self._locks.get(subject)
        if lock is None:
            lock = self._locks[subject] = asyncio.Lock()
        return lock

    async def latest(self, subject: str) -> Optional[VersionEntry]:
        self._check_open()
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT subject, version, schema_id FROM subject_versions
                WHERE subject = ? ORDER BY version DESC LIMIT 1
                """,
                (subject,),
            ).fetchone()
        return _entry_from_row(row) if row else None

    async def all_versions(self, subject: str) -> list[int]:
        return [entry.version for entry in await self.entries(subject)]

    async def append(self, subject: str, schema_id: int) -> VersionEntry:
        self._check_open()

        async with self._lock_for(subject):
            with self._db.transaction() as conn:
                version = conn.execute(
                    "SELECT COALESCE(MAX(version), 0) + 1 FROM subject_versions WHERE subject = ?",
                    (subject,),
                ).fetchone()[0]
                conn.execute(
                    """
                    INSERT INTO subject_versions (subject, version, schema_id, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (subject, version, schema_id, int(time.time() * 1000)),
                )

        return VersionEntry(subject=subject, version=version, schema_id=schema_id)

    async def append_if_new(
        self,
        subject: str,
        schema_id: int,
        dedup_mode: DedupMode = DedupMode.LATEST,
        max_versions: int = 0,
    ) -> tuple[VersionEntry, bool]:
        self._check_open()

        async with self._lock_for(subject):
            # Dedup read, cap check and insert share one write transaction
            with self._db.transaction() as conn:
                latest = conn.execute(
                    """
                    SELECT subject, version, schema_id FROM subject_versions
                    WHERE subject = ? ORDER BY version DESC LIMIT 1
                    """,
                    (subject,),
                ).fetchone()
                if dedup_mode == DedupMode.ANY:
                    previous = conn.execute(
                        """
                        SELECT subject, version, schema_id FROM subject_versions
                        WHERE subject = ? AND schema_id = ? ORDER BY version LIMIT 1
                        """,
                        (subject, schema_id),
                    ).fetchone()
                else:
                    previous = latest if latest and latest["schema_id"] == schema_id else None
                if previous is not None:
                    return _entry_from_row(previous), False

                version = latest["version"] + 1 if latest else 1
                if max_versions and version > max_versions:
                    raise VersionLimitExceededError(subject, max_versions)
                conn.execute(
                    """
                    INSERT INTO subject_versions (subject, version, schema_id, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (subject, version, schema_id, int(time.time() * 1000)),
                )

        return VersionEntry(subject=subject, version=version, schema_id=schema_id), True

    async def entry_at(self, subject: str, version: int) -> VersionEntry:
        self._check_open()
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT subject, version, schema_id FROM subject_versions
                WHERE subject = ? AND version = ?
                """,
                (subject, version),
            ).fetchone()
            if row is None:
                known = conn.execute(
                    "SELECT 1 FROM subject_versions WHERE subject = ? LIMIT 1",
                    (subject,),
                ).fetchone()
        if row is None:
            if known is None:
                raise UnknownSubjectError(subject)
            raise UnknownVersionError(subject, version)
        return _entry_from_row(row)

    async def entries(self, subject: str) -> list[VersionEntry]:
        self._check_open()
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT subject, version, schema_id FROM subject_versions
                WHERE subject = ? ORDER BY version
                """,
                (subject,),
            ).fetchall()
        if not rows:
            raise UnknownSubjectError(subject)
        return [_entry_from_row(row) for row in rows]

    async def subjects(self) -> list[str]:
        self._check_open()
        with self._db.connection() as conn:
            rows = conn.execute(
                "SELECT DISTINCT subject FROM subject_versions ORDER BY subject"
            ).fetchall()
        return [row["subject"] for row in rows]

    async def find(self, subject: str, schema_id: int) -> Optional[VersionEntry]:
        self._check_open()
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT subject, version, schema_id FROM subject_versions
                WHERE subject = ? AND schema_id = ? ORDER BY version LIMIT 1
                """,
                (subject, schema_id),
            ).fetchone()
        return _entry_from_row(row) if row else None

    async def references(self, schema_id: int) -> list[VersionEntry]:
        self._check_open()
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT subject, version, schema_id FROM subject_versions
                WHERE schema_id = ? ORDER BY subject, version
                """,
                (schema_id,),
            ).fetchall()
        return [_entry_from_row(row) for row in rows]
