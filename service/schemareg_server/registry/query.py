"""
Read-only projections over the registry stores.

RegistryQueries answers every lookup the HTTP surface exposes. It never
writes and takes no coordinator locks; reads observe whatever versions
have been committed by the time they run.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from ..errors import (
    InvalidVersionError,
    UnknownSchemaError,
    UnknownSubjectError,
)
from ..schema.canonical import canonicalize
from ..schema.types import SchemaContent, SchemaFormat, SubjectVersion, VersionEntry
from ..store.base import SchemaStore, SubjectLedger

logger = logging.getLogger(__name__)

LATEST = "latest"

VersionParam = Union[int, str]


def parse_version(version: VersionParam) -> Optional[int]:
    """Parse a version parameter.

    Accepts a positive integer (or its decimal string), "latest" or -1.

    Returns:
        The version number, or None for the latest version

    Raises:
        InvalidVersionError: For anything else
    """
    if isinstance(version, str):
        text = version.strip()
        if text.lower() == LATEST:
            return None
        try:
            number = int(text)
        except ValueError:
            raise InvalidVersionError(version) from None
    elif isinstance(version, int) and not isinstance(version, bool):
        number = version
    else:
        raise InvalidVersionError(version)

    if number == -1:
        return None
    if number < 1:
        raise InvalidVersionError(version)
    return number


class RegistryQueries:
    """Lookup façade over SchemaStore and SubjectLedger.

    Example:
        >>> queries = RegistryQueries(store, ledger)
        >>> await queries.list_versions("subject1")
        [1]
        >>> (await queries.get_entry("subject1", "latest")).to_dict()
        {'id': 1, 'name': 'subject1', 'version': 1, 'schema': '["string"]'}
    """

    def __init__(
        self,
        store: SchemaStore,
        ledger: SubjectLedger,
        default_format: SchemaFormat = SchemaFormat.AVRO,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.default_format = default_format

    async def list_subjects(self) -> list[str]:
        return await self.ledger.subjects()

    async def list_versions(self, subject: str) -> list[int]:
        """Version numbers of a subject, ascending.

        Raises:
            UnknownSubjectError: If subject has never been registered
        """
        return await self.ledger.all_versions(subject)

    async def _resolve(self, subject: str, version: VersionParam) -> VersionEntry:
        number = parse_version(version)
        if number is None:
            entry = await self.ledger.latest(subject)
            if entry is None:
                raise UnknownSubjectError(subject)
            return entry
        return await self.ledger.entry_at(subject, number)

    async def get_entry(self, subject: str, version: VersionParam) -> SubjectVersion:
        """Return {id, name, version, schema} for one subject version.

        Raises:
            UnknownSubjectError: If subject has never been registered
            UnknownVersionError: If the subject has no such version
            InvalidVersionError: If version is not a valid version parameter
        """
        entry = await self._resolve(subject, version)
        content = await self.store.get(entry.schema_id)
        return SubjectVersion.from_entry(entry, content)

    async def get_schema_by_entry(self, subject: str, version: VersionParam) -> str:
        """Return only the rendered schema text of a subject version."""
        return (await self.get_entry(subject, version)).schema

    async def get_content_by_id(self, schema_id: int) -> SchemaContent:
        """Return the content for a global id.

        Raises:
            UnknownIdError: If no content has this id
        """
        return await self.store.get(schema_id)

    async def get_versions_for_id(self, schema_id: int) -> list[VersionEntry]:
        """Return every subject version that points at schema_id.

        Raises:
            UnknownIdError: If no content has this id
        """
        await self.store.get(schema_id)
        return await self.ledger.references(schema_id)

    async def lookup_schema(
        self,
        subject: str,
        raw_schema: Union[str, bytes],
        declared_format: Union[SchemaFormat, str, None] = None,
    ) -> SubjectVersion:
        """Find the subject version holding the given schema, without registering it.

        Raises:
            MalformedSchemaError: If the schema cannot be canonicalized
            UnknownSubjectError: If subject has never been registered
            UnknownSchemaError: If the subject does not hold this content
        """
        content = canonicalize(raw_schema, declared_format or self.default_format)
        if await self.ledger.latest(subject) is None:
            raise UnknownSubjectError(subject)

        schema_id = await self.store.lookup(content)
        entry = await self.ledger.find(subject, schema_id) if schema_id is not None else None
        if entry is None:
            raise UnknownSchemaError(subject, content.fingerprint)
        return SubjectVersion.from_entry(entry, content)
