"""
Registry snapshots.

A snapshot is a JSON document holding the complete registry state:

    {
        "version": 1,
        "schemas": [{"id": 1, "schemaType": "AVRO", "schema": "..."}],
        "subjects": {"subject1": [{"version": 1, "id": 1}]}
    }

restore_snapshot() first checks the whole document, then rebuilds state
by replaying it through the normal store operations (get_or_create in id
order, then append in version order) and checking that every replayed id
and version matches.
Ids are allocated as highest + 1, so replay into empty stores
reproduces the exported ids exactly.

Invariants:
    - Restore only targets empty stores
    - An invalid snapshot is rejected before the first write
    - Any divergence raises SnapshotMismatchError
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import SnapshotMismatchError
from ..schema.canonical import canonicalize
from ..schema.types import SchemaContent
from ..store.base import SchemaStore, SubjectLedger

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class RestoreStats:
    """Counts of what a restore replayed."""

    schemas: int = 0
    subjects: int = 0
    versions: int = 0


async def export_snapshot(store: SchemaStore, ledger: SubjectLedger) -> dict[str, Any]:
    """Export the full registry state.

    Args:
        store: Schema store to read
        ledger: Subject ledger to read

    Returns:
        Snapshot dictionary (JSON-serializable)
    """
    schemas = [
        {"id": schema_id, "schemaType": content.format.value, "schema": content.canonical}
        for schema_id, content in await store.schemas()
    ]
    subjects = {}
    for subject in await ledger.subjects():
        subjects[subject] = [
            {"version": entry.version, "id": entry.schema_id}
            for entry in await ledger.entries(subject)
        ]
    return {"version": SNAPSHOT_VERSION, "schemas": schemas, "subjects": subjects}


def _plan_restore(snapshot: dict[str, Any]) -> tuple[list[SchemaContent], dict[str, list[int]]]:
    """Check a whole snapshot before anything is written.

    Returns:
        Canonical contents in id order (index 0 holds id 1), and each
        subject's schema ids in version order

    Raises:
        SnapshotMismatchError: If ids or versions are not gapless from 1,
            content repeats, or a version references an unknown id
        MalformedSchemaError: If a snapshot schema does not canonicalize
    """
    try:
        schemas = sorted(snapshot.get("schemas", []), key=lambda item: item["id"])
        expected_ids = list(range(1, len(schemas) + 1))
        actual_ids = [item["id"] for item in schemas]
        if actual_ids != expected_ids or not all(type(i) is int for i in actual_ids):
            raise SnapshotMismatchError(
                "Snapshot schema ids must be unique and gapless from 1",
                expected=expected_ids,
                actual=actual_ids,
            )
        contents = [canonicalize(item["schema"], item.get("schemaType")) for item in schemas]
        if len(set(contents)) != len(contents):
            raise SnapshotMismatchError("Snapshot holds the same content under two ids")

        plan: dict[str, list[int]] = {}
        for subject, versions in sorted(snapshot.get("subjects", {}).items()):
            ordered = sorted(versions, key=lambda v: v["version"])
            numbers = [item["version"] for item in ordered]
            if not numbers or numbers != list(range(1, len(ordered) + 1)):
                raise SnapshotMismatchError(
                    f"{subject} versions must be gapless from 1",
                    actual=numbers,
                )
            for item in ordered:
                if type(item["id"]) is not int or not 1 <= item["id"] <= len(contents):
                    raise SnapshotMismatchError(
                        f"{subject} version {item['version']} references unknown id {item['id']}",
                        expected=item["id"],
                    )
            plan[subject] = [item["id"] for item in ordered]
    except (AttributeError, KeyError, TypeError) as e:
        raise SnapshotMismatchError(f"Invalid snapshot document: {e!r}") from e
    return contents, plan


async def restore_snapshot(
    store: SchemaStore,
    ledger: SubjectLedger,
    snapshot: dict[str, Any],
) -> RestoreStats:
    """Replay a snapshot into empty stores.

    The whole document is checked first; a rejected snapshot leaves the
    stores untouched.

    Args:
        store: Empty schema store
        ledger: Empty subject ledger
        snapshot: Snapshot as produced by export_snapshot()

    Returns:
        RestoreStats

    Raises:
        SnapshotMismatchError: If the stores are not empty, the snapshot is
            invalid, or a replayed id/version differs from the snapshot
        MalformedSchemaError: If a snapshot schema does not canonicalize
    """
    if snapshot.get("version") != SNAPSHOT_VERSION:
        raise SnapshotMismatchError(
            "Unsupported snapshot version",
            expected=SNAPSHOT_VERSION,
            actual=snapshot.get("version"),
        )
    if await store.count() or await ledger.subjects():
        raise SnapshotMismatchError("Snapshots can only be restored into an empty registry")

    contents, plan = _plan_restore(snapshot)

    stats = RestoreStats()
    for expected_id, content in enumerate(contents, start=1):
        schema_id = await store.get_or_create(content)
        if schema_id != expected_id:
            raise SnapshotMismatchError(
                f"Schema replayed as id {schema_id}, snapshot has {expected_id}",
                expected=expected_id,
                actual=schema_id,
            )
        stats.schemas += 1

    for subject, schema_ids in plan.items():
        for expected_version, schema_id in enumerate(schema_ids, start=1):
            entry = await ledger.append(subject, schema_id)
            if entry.version != expected_version:
                raise SnapshotMismatchError(
                    f"{subject} replayed as version {entry.version}, "
                    f"snapshot has {expected_version}",
                    expected=expected_version,
                    actual=entry.version,
                )
            stats.versions += 1
        stats.subjects += 1

    logger.info(
        f"Restored snapshot: {stats.schemas} schemas, {stats.subjects} subjects, "
        f"{stats.versions} versions"
    )
    return stats


def load_snapshot(path: str | Path) -> dict[str, Any]:
    """Read a snapshot file.

    Raises:
        SnapshotMismatchError: If the file is not a JSON object
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SnapshotMismatchError(f"Snapshot {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise SnapshotMismatchError(f"Snapshot {path} is not a JSON object")
    return data
