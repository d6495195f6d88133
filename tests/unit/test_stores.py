"""
Unit tests for the registry stores.

Every test runs against both the in-memory and the SQLite backend.

Tests cover:
- Id allocation and content dedup
- Subject ledger ordering and lookups
- Closed-store behaviour
- Concurrent allocation, including separate writers on one SQLite file
- SQLite persistence across reopen
"""

import asyncio
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor

import pytest

from service.schemareg_server.config import DedupMode, StorageBackend, StorageConfig
from service.schemareg_server.errors import (
    StorageUnavailableError,
    UnknownIdError,
    UnknownSubjectError,
    UnknownVersionError,
    VersionLimitExceededError,
)
from service.schemareg_server.schema import SchemaFormat, VersionEntry, canonicalize
from service.schemareg_server.store import (
    InMemorySchemaStore,
    InMemorySubjectLedger,
    SchemaStore,
    SqliteDatabase,
    SqliteSchemaStore,
    SqliteSubjectLedger,
    SubjectLedger,
    create_stores,
)

STRING = canonicalize('"string"')
LONG = canonicalize('"long"')
JSON_OBJECT = canonicalize('{"type": "object"}', "JSON")


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture(params=["memory", "sqlite"])
def stores(request, data_dir):
    """Create unopened (store, ledger) for each backend."""
    if request.param == "memory":
        return InMemorySchemaStore(), InMemorySubjectLedger()
    database = SqliteDatabase(os.path.join(data_dir, "registry.db"), wal_mode=False)
    return SqliteSchemaStore(database), SqliteSubjectLedger(database)


@pytest.fixture
async def store(stores):
    schema_store, _ = stores
    await schema_store.open()
    yield schema_store
    await schema_store.close()


@pytest.fixture
async def ledger(stores):
    _, subject_ledger = stores
    await subject_ledger.open()
    yield subject_ledger
    await subject_ledger.close()


class TestSchemaStore:
    """Tests shared by every SchemaStore backend."""

    def test_implements_protocol(self, stores):
        schema_store, subject_ledger = stores
        assert isinstance(schema_store, SchemaStore)
        assert isinstance(subject_ledger, SubjectLedger)

    @pytest.mark.asyncio
    async def test_open_close(self, stores):
        """Test store lifecycle."""
        schema_store, _ = stores
        assert not schema_store.is_open

        await schema_store.open()
        assert schema_store.is_open

        await schema_store.close()
        assert not schema_store.is_open

    @pytest.mark.asyncio
    async def test_ids_start_at_one_and_increase(self, store):
        """New content gets highest id + 1."""
        assert await store.get_or_create(STRING) == 1
        assert await store.get_or_create(LONG) == 2
        assert await store.get_or_create(JSON_OBJECT) == 3
        assert await store.count() == 3

    @pytest.mark.asyncio
    async def test_same_content_same_id(self, store):
        """Equal content never gets a second id."""
        first = await store.get_or_create(STRING)
        second = await store.get_or_create(canonicalize('{"type": "string"}'))

        assert first == second
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_get_returns_content(self, store):
        schema_id = await store.get_or_create(JSON_OBJECT)

        content = await store.get(schema_id)

        assert content == JSON_OBJECT
        assert content.format is SchemaFormat.JSON

    @pytest.mark.asyncio
    async def test_get_unknown_id(self, store):
        with pytest.raises(UnknownIdError) as exc_info:
            await store.get(42)

        assert exc_info.value.schema_id == 42

    @pytest.mark.asyncio
    async def test_lookup_never_allocates(self, store):
        """lookup() returns None for new content without storing it."""
        assert await store.lookup(STRING) is None
        assert await store.count() == 0

        schema_id = await store.get_or_create(STRING)
        assert await store.lookup(STRING) == schema_id

    @pytest.mark.asyncio
    async def test_schemas_in_id_order(self, store):
        await store.get_or_create(LONG)
        await store.get_or_create(STRING)

        assert await store.schemas() == [(1, LONG), (2, STRING)]

    @pytest.mark.asyncio
    async def test_closed_store_unavailable(self, stores):
        """Operations on a closed store raise StorageUnavailableError."""
        schema_store, _ = stores

        with pytest.raises(StorageUnavailableError):
            await schema_store.get_or_create(STRING)
        with pytest.raises(StorageUnavailableError):
            await schema_store.get(1)

    @pytest.mark.asyncio
    async def test_concurrent_get_or_create_single_allocation(self, store):
        """N concurrent callers with the same new content see one id."""
        ids = await asyncio.gather(*(store.get_or_create(STRING) for _ in range(25)))

        assert set(ids) == {1}
        assert await store.count() == 1


class TestSubjectLedger:
    """Tests shared by every SubjectLedger backend."""

    @pytest.mark.asyncio
    async def test_append_assigns_versions(self, ledger):
        """Versions start at 1 and increase per subject."""
        first = await ledger.append("subject1", 1)
        second = await ledger.append("subject1", 2)
        other = await ledger.append("subject2", 1)

        assert first == VersionEntry("subject1", 1, 1)
        assert second == VersionEntry("subject1", 2, 2)
        assert other == VersionEntry("subject2", 1, 1)

    @pytest.mark.asyncio
    async def test_latest(self, ledger):
        assert await ledger.latest("subject1") is None

        await ledger.append("subject1", 5)
        await ledger.append("subject1", 7)

        assert await ledger.latest("subject1") == VersionEntry("subject1", 2, 7)

    @pytest.mark.asyncio
    async def test_all_versions_and_entries(self, ledger):
        await ledger.append("subject1", 3)
        await ledger.append("subject1", 4)

        assert await ledger.all_versions("subject1") == [1, 2]
        assert [e.schema_id for e in await ledger.entries("subject1")] == [3, 4]

    @pytest.mark.asyncio
    async def test_unknown_subject(self, ledger):
        with pytest.raises(UnknownSubjectError):
            await ledger.all_versions("missing")
        with pytest.raises(UnknownSubjectError):
            await ledger.entries("missing")
        with pytest.raises(UnknownSubjectError):
            await ledger.entry_at("missing", 1)

    @pytest.mark.asyncio
    async def test_entry_at(self, ledger):
        await ledger.append("subject1", 9)

        assert await ledger.entry_at("subject1", 1) == VersionEntry("subject1", 1, 9)
        with pytest.raises(UnknownVersionError) as exc_info:
            await ledger.entry_at("subject1", 2)

        assert exc_info.value.version == 2

    @pytest.mark.asyncio
    async def test_subjects_sorted(self, ledger):
        assert await ledger.subjects() == []

        await ledger.append("zeta", 1)
        await ledger.append("alpha", 1)

        assert await ledger.subjects() == ["alpha", "zeta"]

    @pytest.mark.asyncio
    async def test_find_returns_earliest(self, ledger):
        await ledger.append("subject1", 1)
        await ledger.append("subject1", 2)
        await ledger.append("subject1", 1)

        assert await ledger.find("subject1", 1) == VersionEntry("subject1", 1, 1)
        assert await ledger.find("subject1", 3) is None
        assert await ledger.find("missing", 1) is None

    @pytest.mark.asyncio
    async def test_references(self, ledger):
        """references() lists entries by subject then version."""
        await ledger.append("b", 1)
        await ledger.append("a", 2)
        await ledger.append("a", 1)

        assert await ledger.references(1) == [
            VersionEntry("a", 2, 1),
            VersionEntry("b", 1, 1),
        ]
        assert await ledger.references(99) == []

    @pytest.mark.asyncio
    async def test_closed_ledger_unavailable(self, stores):
        _, subject_ledger = stores

        with pytest.raises(StorageUnavailableError):
            await subject_ledger.append("subject1", 1)

    @pytest.mark.asyncio
    async def test_concurrent_appends_gapless(self, ledger):
        """Concurrent appends to one subject produce 1..N with no gaps."""
        entries = await asyncio.gather(*(ledger.append("subject1", i) for i in range(1, 11)))

        assert sorted(e.version for e in entries) == list(range(1, 11))
        assert await ledger.all_versions("subject1") == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_append_if_new_latest(self, ledger):
        """Only the latest version is matched in LATEST mode."""
        entry, created = await ledger.append_if_new("subject1", 1)
        assert (entry, created) == (VersionEntry("subject1", 1, 1), True)

        entry, created = await ledger.append_if_new("subject1", 1)
        assert (entry, created) == (VersionEntry("subject1", 1, 1), False)

        await ledger.append_if_new("subject1", 2)
        entry, created = await ledger.append_if_new("subject1", 1)
        assert (entry, created) == (VersionEntry("subject1", 3, 1), True)

    @pytest.mark.asyncio
    async def test_append_if_new_any(self, ledger):
        """ANY mode returns the earliest version holding the id."""
        await ledger.append_if_new("subject1", 1, DedupMode.ANY)
        await ledger.append_if_new("subject1", 2, DedupMode.ANY)

        entry, created = await ledger.append_if_new("subject1", 1, DedupMode.ANY)

        assert (entry, created) == (VersionEntry("subject1", 1, 1), False)
        assert await ledger.all_versions("subject1") == [1, 2]

    @pytest.mark.asyncio
    async def test_append_if_new_version_cap(self, ledger):
        """The cap rejects new versions but not a matching re-registration."""
        await ledger.append_if_new("subject1", 1, max_versions=2)
        await ledger.append_if_new("subject1", 2, max_versions=2)

        assert (await ledger.append_if_new("subject1", 2, max_versions=2))[1] is False
        with pytest.raises(VersionLimitExceededError):
            await ledger.append_if_new("subject1", 3, max_versions=2)

        assert await ledger.all_versions("subject1") == [1, 2]

    @pytest.mark.asyncio
    async def test_concurrent_append_if_new_single_version(self, ledger):
        results = await asyncio.gather(*(ledger.append_if_new("subject1", 1) for _ in range(10)))

        assert sum(created for _, created in results) == 1
        assert await ledger.all_versions("subject1") == [1]


class TestSqlitePersistence:
    """SQLite-specific behaviour."""

    @pytest.mark.asyncio
    async def test_state_survives_reopen(self, data_dir):
        """Ids and versions persist, and allocation continues after restart."""
        path = os.path.join(data_dir, "registry.db")

        database = SqliteDatabase(path)
        store, ledger = SqliteSchemaStore(database), SqliteSubjectLedger(database)
        await store.open()
        await ledger.open()
        await store.get_or_create(STRING)
        await ledger.append("subject1", 1)
        await store.close()
        await ledger.close()

        database = SqliteDatabase(path)
        store, ledger = SqliteSchemaStore(database), SqliteSubjectLedger(database)
        await store.open()
        await ledger.open()

        assert await store.get(1) == STRING
        assert await store.get_or_create(STRING) == 1
        assert await store.get_or_create(LONG) == 2
        assert await ledger.latest("subject1") == VersionEntry("subject1", 1, 1)
        assert (await ledger.append("subject1", 2)).version == 2

    @pytest.mark.asyncio
    async def test_unreachable_path(self, data_dir):
        """A database path under a regular file is unavailable."""
        blocker = os.path.join(data_dir, "not-a-dir")
        with open(blocker, "w") as f:
            f.write("x")

        store = SqliteSchemaStore(SqliteDatabase(os.path.join(blocker, "registry.db")))

        with pytest.raises(StorageUnavailableError) as exc_info:
            await store.open()

        assert exc_info.value.backend == "sqlite"

    @pytest.mark.asyncio
    async def test_failed_transaction_rolls_back(self, data_dir):
        """An error inside a transaction leaves no rows behind."""
        database = SqliteDatabase(os.path.join(data_dir, "registry.db"))
        database.create_schema()

        with pytest.raises(RuntimeError):
            with database.transaction() as conn:
                conn.execute(
                    "INSERT INTO schemas (schema_id, fingerprint, format, canonical, created_at) "
                    "VALUES (1, 'x', 'AVRO', '\"string\"', 0)"
                )
                raise RuntimeError("boom")

        with database.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM schemas").fetchone()[0] == 0


def _run_in_thread(path, work):
    """Run work(store, ledger) on a fresh event loop with its own database handle."""

    async def run():
        database = SqliteDatabase(path)
        store, ledger = SqliteSchemaStore(database), SqliteSubjectLedger(database)
        await store.open()
        await ledger.open()
        try:
            return await work(store, ledger)
        finally:
            await ledger.close()
            await store.close()

    return asyncio.run(run())


def _run_writers(path, work, writers=4):
    SqliteDatabase(path).create_schema()
    with ThreadPoolExecutor(max_workers=writers) as pool:
        futures = [pool.submit(_run_in_thread, path, work) for _ in range(writers)]
        return [future.result() for future in futures]


class TestSqliteConcurrentWriters:
    """Independent writers (own connection, own event loop) on one SQLite file."""

    def test_get_or_create_single_allocation(self, data_dir):
        path = os.path.join(data_dir, "registry.db")

        async def work(store, ledger):
            return [await store.get_or_create(c) for _ in range(10) for c in (STRING, LONG, JSON_OBJECT)]

        results = _run_writers(path, work)

        assert all(ids == results[0] for ids in results)
        assert sorted(set(results[0])) == [1, 2, 3]

        async def count(store, ledger):
            return await store.count()

        assert _run_in_thread(path, count) == 3

    def test_append_gapless(self, data_dir):
        path = os.path.join(data_dir, "registry.db")

        async def work(store, ledger):
            return [(await ledger.append("subject1", 1)).version for _ in range(10)]

        results = _run_writers(path, work)

        versions = [v for thread_versions in results for v in thread_versions]
        assert sorted(versions) == list(range(1, 41))

        async def all_versions(store, ledger):
            return await ledger.all_versions("subject1")

        assert _run_in_thread(path, all_versions) == list(range(1, 41))

    def test_append_if_new_one_version_per_subject(self, data_dir):
        """Every subject ends with exactly one version and one creator."""
        path = os.path.join(data_dir, "registry.db")
        subjects = [f"subject{i}" for i in range(50)]

        async def work(store, ledger):
            return [(await ledger.append_if_new(s, 1))[1] for s in subjects]

        results = _run_writers(path, work)

        for index in range(len(subjects)):
            assert sum(created[index] for created in results) == 1

        async def versions(store, ledger):
            return [await ledger.all_versions(s) for s in subjects]

        assert _run_in_thread(path, versions) == [[1]] * len(subjects)


class TestCreateStores:
    """Tests for the create_stores factory."""

    def test_memory_backend(self):
        store, ledger = create_stores(StorageConfig(backend=StorageBackend.MEMORY))

        assert isinstance(store, InMemorySchemaStore)
        assert isinstance(ledger, InMemorySubjectLedger)

    def test_sqlite_backend_shares_database(self, data_dir):
        store, ledger = create_stores(
            StorageConfig(backend=StorageBackend.SQLITE, data_dir=data_dir)
        )

        assert isinstance(store, SqliteSchemaStore)
        assert isinstance(ledger, SqliteSubjectLedger)
        assert store._db is ledger._db
        assert str(store._db.path) == os.path.join(data_dir, "registry.db")
