"""
Core value types for the schema registry.

This module defines the immutable records passed between the
canonicalizer, the stores and the query layer:
- SchemaFormat: declared format tag of a schema
- SchemaContent: canonical schema text plus format
- VersionEntry: one (subject, version, schema_id) ledger row
- SubjectVersion: read projection of a version with its schema text

Invariants:
    - SchemaContent equality is exact on (format, canonical)
    - The fingerprint is derived from (format, canonical) only
    - VersionEntry is never mutated once written

Example:
    >>> content = SchemaContent(canonical='"string"')
    >>> content.fingerprint
    'sha256:...'
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from ..errors import InvalidSubjectError, MalformedSchemaError


class SchemaFormat(Enum):
    """Supported schema formats."""

    AVRO = "AVRO"
    JSON = "JSON"
    PROTOBUF = "PROTOBUF"

    @classmethod
    def from_str(cls, value: Union[str, SchemaFormat, None]) -> SchemaFormat:
        """Convert a format tag to SchemaFormat.

        Args:
            value: Tag such as "AVRO" or "json"; None means AVRO

        Returns:
            Corresponding SchemaFormat

        Raises:
            MalformedSchemaError: If the tag is not a supported format
        """
        if value is None:
            return cls.AVRO
        if isinstance(value, SchemaFormat):
            return value
        for fmt in cls:
            if fmt.value == value.upper():
                return fmt
        valid = [f.value for f in cls]
        raise MalformedSchemaError(
            f"Unsupported schema format '{value}'. Valid formats: {valid}",
            schema_format=value,
        )


@dataclass(frozen=True)
class SchemaContent:
    """Canonical schema content.

    Attributes:
        canonical: Canonical text produced by the canonicalizer
        format: Format the text was canonicalized as
    """

    canonical: str
    format: SchemaFormat = SchemaFormat.AVRO

    @property
    def fingerprint(self) -> str:
        """SHA-256 over format and canonical text, 'sha256:<hex>'."""
        digest = hashlib.sha256()
        digest.update(self.format.value.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(self.canonical.encode("utf-8"))
        return f"sha256:{digest.hexdigest()}"

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"schema": self.canonical}
        if self.format is not SchemaFormat.AVRO:
            data["schemaType"] = self.format.value
        return data


@dataclass(frozen=True)
class VersionEntry:
    """One row of a subject's version ledger.

    Attributes:
        subject: Subject name
        version: Subject-local version number, starting at 1
        schema_id: Global schema id the version points to
    """

    subject: str
    version: int
    schema_id: int

    def to_dict(self) -> dict[str, Any]:
        return {"subject": self.subject, "version": self.version}


@dataclass(frozen=True)
class SubjectVersion:
    """A subject version joined with its schema content.

    This is the shape returned by the query layer for
    GET /subjects/{subject}/versions/{version}.
    """

    schema_id: int
    subject: str
    version: int
    content: SchemaContent

    @property
    def schema(self) -> str:
        return self.content.canonical

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.schema_id,
            "name": self.subject,
            "version": self.version,
            "schema": self.content.canonical,
        }
        if self.content.format is not SchemaFormat.AVRO:
            data["schemaType"] = self.content.format.value
        return data

    @classmethod
    def from_entry(cls, entry: VersionEntry, content: SchemaContent) -> SubjectVersion:
        return cls(
            schema_id=entry.schema_id,
            subject=entry.subject,
            version=entry.version,
            content=content,
        )


def normalize_subject(subject: Optional[str]) -> str:
    """Validate a subject name, returning it unchanged.

    Raises:
        InvalidSubjectError: If subject is not a non-empty string
    """
    if not isinstance(subject, str) or not subject.strip():
        raise InvalidSubjectError(subject)
    return subject
