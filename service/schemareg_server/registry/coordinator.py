"""
Registration protocol for the schema registry.

The RegistryCoordinator is the only mutating entry point. A registration
runs in two decoupled phases:

1. Global identity: canonicalize the schema, then get_or_create its id in
   the SchemaStore. This phase is independent of the subject.
2. Subject bookkeeping: SubjectLedger.append_if_new compares the id with
   the subject's dedup target and appends a new version only if it
   differs, as one atomic step per subject.

Invariants:
    - The same content registered under any subject yields the same id
    - Re-registering a subject's latest content appends nothing
    - Two subjects never wait on each other
    - An abort between the phases leaves an allocated id and no version,
      which a retry simply reuses

How to change safely:
    - Never allocate a global id inside the subject's critical section
    - Keep all state changes inside SchemaStore/SubjectLedger calls so each
      phase stays individually atomic
"""

from __future__ import annotations

import logging
from typing import Union

from ..config import DedupMode, RegistryConfig
from ..schema.canonical import canonicalize
from ..schema.types import SchemaFormat, SubjectVersion, normalize_subject
from ..store.base import SchemaStore, SubjectLedger

logger = logging.getLogger(__name__)


class RegistryCoordinator:
    """Registers schemas under subjects.

    Attributes:
        store: Global schema store
        ledger: Subject version ledger
        dedup_mode: Which versions an identical registration is matched against
        default_format: Format used when a request declares none
        max_versions_per_subject: Version cap per subject (0 = unlimited)

    Example:
        >>> coordinator = RegistryCoordinator(store, ledger)
        >>> await coordinator.register("subject1", '["string"]')
        1
        >>> await coordinator.register("subject1", '["string"]')
        1
    """

    def __init__(
        self,
        store: SchemaStore,
        ledger: SubjectLedger,
        dedup_mode: DedupMode = DedupMode.LATEST,
        default_format: SchemaFormat = SchemaFormat.AVRO,
        max_versions_per_subject: int = 0,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.dedup_mode = dedup_mode
        self.default_format = default_format
        self.max_versions_per_subject = max_versions_per_subject

    @classmethod
    def from_config(
        cls,
        store: SchemaStore,
        ledger: SubjectLedger,
        config: RegistryConfig,
    ) -> RegistryCoordinator:
        return cls(
            store,
            ledger,
            dedup_mode=config.dedup_mode,
            default_format=SchemaFormat.from_str(config.default_format),
            max_versions_per_subject=config.max_versions_per_subject,
        )

    async def register(
        self,
        subject: str,
        raw_schema: Union[str, bytes],
        declared_format: Union[SchemaFormat, str, None] = None,
    ) -> int:
        """Register a schema under a subject.

        Args:
            subject: Subject name
            raw_schema: Schema text
            declared_format: Format tag (default_format if None)

        Returns:
            Global schema id of the content

        Raises:
            InvalidSubjectError: If subject is empty
            MalformedSchemaError: If the schema cannot be canonicalized
            VersionLimitExceededError: If a new version would exceed the cap
            StorageUnavailableError: If a store write fails
        """
        registered = await self.register_entry(subject, raw_schema, declared_format)
        return registered.schema_id

    async def register_entry(
        self,
        subject: str,
        raw_schema: Union[str, bytes],
        declared_format: Union[SchemaFormat, str, None] = None,
    ) -> SubjectVersion:
        """Register a schema and return the subject version it resolved to.

        The returned version is either the newly appended one or, on the
        idempotent path, the existing version that already holds the id.
        """
        subject = normalize_subject(subject)
        content = canonicalize(raw_schema, declared_format or self.default_format)

        schema_id = await self.store.get_or_create(content)

        entry, created = await self.ledger.append_if_new(
            subject,
            schema_id,
            dedup_mode=self.dedup_mode,
            max_versions=self.max_versions_per_subject,
        )
        if not created:
            logger.debug(
                "Schema already registered under subject",
                extra={"subject": subject, "version": entry.version, "schema_id": schema_id},
            )
            return SubjectVersion.from_entry(entry, content)

        logger.info(
            f"Registered {subject} version {entry.version} (schema_id={schema_id})",
            extra={
                "subject": subject,
                "version": entry.version,
                "schema_id": schema_id,
                "fingerprint": content.fingerprint,
            },
        )
        return SubjectVersion.from_entry(entry, content)
