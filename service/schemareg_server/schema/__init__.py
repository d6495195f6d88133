"""
Schema module for the registry.

This module provides the content side of the registry:
- Value types (SchemaFormat, SchemaContent, VersionEntry, SubjectVersion)
- Canonicalization of raw schema text per format
- Avro Parsing Canonical Form

Invariants:
    - Canonical text is the only basis for content equality
    - Fingerprints are stable across processes and releases

How to change safely:
    - Never change the canonical form of an existing format in place;
      stored fingerprints would stop matching new registrations
    - Add new formats as new SchemaFormat members with their own
      canonicalizer
"""

from .avro import parsing_canonical_form
from .canonical import canonicalize, fingerprint_of
from .types import (
    SchemaContent,
    SchemaFormat,
    SubjectVersion,
    VersionEntry,
    normalize_subject,
)

__all__ = [
    # Types
    "SchemaFormat",
    "SchemaContent",
    "VersionEntry",
    "SubjectVersion",
    "normalize_subject",
    # Canonicalization
    "canonicalize",
    "fingerprint_of",
    "parsing_canonical_form",
]
