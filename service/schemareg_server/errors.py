"""
Error types for the schema registry.

All errors raised by the registry core derive from RegistryError and carry
a stable error code that the HTTP layer maps to a status:

- MalformedSchemaError: schema text cannot be canonicalized
- InvalidSubjectError / InvalidVersionError: bad request parameters
- UnknownSubjectError / UnknownVersionError / UnknownIdError /
  UnknownSchemaError: lookup misses
- VersionLimitExceededError: subject is at its configured version cap
- StorageUnavailableError: the durable store cannot be reached
- SnapshotMismatchError: a snapshot replay diverged from its source

Invariants:
    - None of these errors is retried inside the registry
    - A raised error never leaves a partial write behind
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RegistryError(Exception):
    """Base exception for all registry errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REGISTRY_ERROR"
        self.details = details or {}


class MalformedSchemaError(RegistryError):
    """Schema text could not be parsed in its declared format."""

    def __init__(self, message: str, schema_format: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="MALFORMED_SCHEMA",
            details={"format": schema_format},
        )
        self.schema_format = schema_format


class InvalidSubjectError(RegistryError):
    """Subject name is empty or not a string."""

    def __init__(self, subject: Any) -> None:
        super().__init__(
            f"Invalid subject name: {subject!r}",
            code="INVALID_SUBJECT",
            details={"subject": subject},
        )
        self.subject = subject


class InvalidVersionError(RegistryError):
    """Version parameter is neither a positive integer nor 'latest'."""

    def __init__(self, version: Any) -> None:
        super().__init__(
            f"Invalid version {version!r}: expected a positive integer, 'latest' or -1",
            code="INVALID_VERSION",
            details={"version": version},
        )
        self.version = version


class UnknownSubjectError(RegistryError):
    """Subject has never been registered."""

    def __init__(self, subject: str) -> None:
        super().__init__(
            f"Subject '{subject}' not found",
            code="UNKNOWN_SUBJECT",
            details={"subject": subject},
        )
        self.subject = subject


class UnknownVersionError(RegistryError):
    """Subject exists but has no such version."""

    def __init__(self, subject: str, version: int) -> None:
        super().__init__(
            f"Version {version} not found for subject '{subject}'",
            code="UNKNOWN_VERSION",
            details={"subject": subject, "version": version},
        )
        self.subject = subject
        self.version = version


class UnknownIdError(RegistryError):
    """No schema has been assigned this id."""

    def __init__(self, schema_id: int) -> None:
        super().__init__(
            f"Schema id {schema_id} not found",
            code="UNKNOWN_ID",
            details={"schema_id": schema_id},
        )
        self.schema_id = schema_id


class UnknownSchemaError(RegistryError):
    """Subject exists but does not hold the given content."""

    def __init__(self, subject: str, fingerprint: str) -> None:
        super().__init__(
            f"Schema {fingerprint} is not registered under subject '{subject}'",
            code="UNKNOWN_SCHEMA",
            details={"subject": subject, "fingerprint": fingerprint},
        )
        self.subject = subject
        self.fingerprint = fingerprint


class VersionLimitExceededError(RegistryError):
    """Subject already holds the configured maximum number of versions."""

    def __init__(self, subject: str, limit: int) -> None:
        super().__init__(
            f"Subject '{subject}' already has {limit} versions (maximum)",
            code="VERSION_LIMIT_EXCEEDED",
            details={"subject": subject, "limit": limit},
        )
        self.subject = subject
        self.limit = limit


class StorageUnavailableError(RegistryError):
    """The durable store is closed or failed.

    Callers may retry with backoff. The failed operation left no
    visible mutation.
    """

    def __init__(self, message: str, backend: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="STORAGE_UNAVAILABLE",
            details={"backend": backend},
        )
        self.backend = backend


class SnapshotMismatchError(RegistryError):
    """Replaying a snapshot produced a different id or version."""

    def __init__(self, message: str, expected: Any = None, actual: Any = None) -> None:
        super().__init__(
            message,
            code="SNAPSHOT_MISMATCH",
            details={"expected": expected, "actual": actual},
        )
        self.expected = expected
        self.actual = actual
