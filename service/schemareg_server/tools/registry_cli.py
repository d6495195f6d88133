"""
Registry CLI tool.

This tool works directly on a registry database, without a running server:
- canonicalize: Print the fingerprint and canonical form of a schema file
- snapshot: Export the registry to JSON
- restore: Replay a snapshot into an empty registry
- register: Register a schema file under a subject

Usage:
    schemareg canonicalize user.avsc
    schemareg snapshot --data-dir /var/lib/schemareg > registry.json
    schemareg restore --data-dir /tmp/new registry.json
    schemareg register --data-dir /var/lib/schemareg users-value user.avsc

Invariants:
    - Registry errors cause a non-zero exit code
    - Snapshot output is deterministic (sorted JSON)
    - restore refuses a non-empty registry

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripts that parse it
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from ..config import RegistryConfig
from ..errors import RegistryError
from ..registry import (
    RegistryCoordinator,
    RestoreStats,
    export_snapshot,
    load_snapshot,
    restore_snapshot,
)
from ..schema import SchemaContent, canonicalize
from ..store import SqliteDatabase, SqliteSchemaStore, SqliteSubjectLedger

logger = logging.getLogger(__name__)


class RegistryCLI:
    """Offline operations on a registry database.

    Example:
        >>> cli = RegistryCLI("/var/lib/schemareg")
        >>> print(await cli.snapshot())
    """

    def __init__(
        self,
        data_dir: str | None = None,
        db_filename: str = "registry.db",
        registry_config: RegistryConfig | None = None,
    ) -> None:
        self.data_dir = data_dir
        self.db_filename = db_filename
        self.registry_config = registry_config

    def _open_stores(self) -> tuple[SqliteSchemaStore, SqliteSubjectLedger]:
        if not self.data_dir:
            raise ValueError("--data-dir is required for this command")
        database = SqliteDatabase(Path(self.data_dir) / self.db_filename)
        return SqliteSchemaStore(database), SqliteSubjectLedger(database)

    def canonicalize(self, schema_path: str, schema_format: Optional[str] = None) -> SchemaContent:
        """Canonicalize a schema file.

        Args:
            schema_path: Path to the schema file
            schema_format: Format tag (AVRO if None)

        Returns:
            SchemaContent of the file
        """
        return canonicalize(Path(schema_path).read_bytes(), schema_format)

    async def snapshot(self) -> str:
        """Export the registry as sorted, indented JSON."""
        store, ledger = self._open_stores()
        await store.open()
        await ledger.open()
        try:
            data = await export_snapshot(store, ledger)
        finally:
            await ledger.close()
            await store.close()
        return json.dumps(data, indent=2, sort_keys=True)

    async def restore(self, snapshot_path: str) -> RestoreStats:
        """Replay a snapshot file into the (empty) registry."""
        snapshot = load_snapshot(snapshot_path)
        store, ledger = self._open_stores()
        await store.open()
        await ledger.open()
        try:
            return await restore_snapshot(store, ledger, snapshot)
        finally:
            await ledger.close()
            await store.close()

    async def register(
        self,
        subject: str,
        schema_path: str,
        schema_format: Optional[str] = None,
    ) -> int:
        """Register a schema file under a subject and return its id.

        Registration settings come from the REGISTRY_* environment
        variables the server reads, unless a RegistryConfig was given.
        """
        config = self.registry_config or RegistryConfig.from_env()
        store, ledger = self._open_stores()
        await store.open()
        await ledger.open()
        try:
            coordinator = RegistryCoordinator.from_config(store, ledger, config)
            return await coordinator.register(
                subject, Path(schema_path).read_bytes(), schema_format
            )
        finally:
            await ledger.close()
            await store.close()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for the registry tool."""
    parser = argparse.ArgumentParser(description="Schema registry maintenance tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_store_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--data-dir", required=True, help="Registry data directory")
        sub.add_argument("--db-file", default="registry.db", help="Database file name")

    # canonicalize command
    canonical_parser = subparsers.add_parser(
        "canonicalize", help="Print fingerprint and canonical form of a schema"
    )
    canonical_parser.add_argument("file", help="Schema file")
    canonical_parser.add_argument("--format", help="Schema format (AVRO, JSON, PROTOBUF)")

    # snapshot command
    snapshot_parser = subparsers.add_parser("snapshot", help="Export registry to JSON")
    add_store_args(snapshot_parser)
    snapshot_parser.add_argument("--output", "-o", help="Output file (default: stdout)")

    # restore command
    restore_parser = subparsers.add_parser("restore", help="Replay a snapshot into an empty registry")
    add_store_args(restore_parser)
    restore_parser.add_argument("file", help="Snapshot JSON file")

    # register command
    register_parser = subparsers.add_parser("register", help="Register a schema file")
    add_store_args(register_parser)
    register_parser.add_argument("subject", help="Subject name")
    register_parser.add_argument("file", help="Schema file")
    register_parser.add_argument("--format", help="Schema format (AVRO, JSON, PROTOBUF)")

    args = parser.parse_args(argv)
    cli = RegistryCLI(getattr(args, "data_dir", None), getattr(args, "db_file", "registry.db"))

    try:
        if args.command == "canonicalize":
            content = cli.canonicalize(args.file, args.format)
            print(content.fingerprint)
            print(content.canonical)

        elif args.command == "snapshot":
            output = asyncio.run(cli.snapshot())
            if args.output:
                Path(args.output).write_text(output + "\n", encoding="utf-8")
                print(f"Snapshot written to {args.output}", file=sys.stderr)
            else:
                print(output)

        elif args.command == "restore":
            stats = asyncio.run(cli.restore(args.file))
            print(
                f"Restored {stats.schemas} schemas, {stats.subjects} subjects, "
                f"{stats.versions} versions"
            )

        elif args.command == "register":
            schema_id = asyncio.run(cli.register(args.subject, args.file, args.format))
            print(json.dumps({"id": schema_id}))

    except RegistryError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
