"""
Configuration management for the Schemareg server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit DATA_DIR
    - Invalid values fail at startup, never at first request

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .schema.types import SchemaFormat

logger = logging.getLogger(__name__)


class StorageBackend(Enum):
    """Supported registry storage backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


class DedupMode(Enum):
    """Which earlier versions an idempotent registration is matched against.

    LATEST: only the subject's latest version (re-registering older
        content appends it again as a new version)
    ANY: any version in the subject's history
    """

    LATEST = "latest"
    ANY = "any"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        cors_origins: Allowed CORS origins ("*" allows any)
    """

    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("HTTP_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Registry storage configuration.

    Attributes:
        backend: Storage backend
        data_dir: Directory holding the registry database
        db_filename: Database file name within data_dir
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StorageBackend = StorageBackend.SQLITE
    data_dir: str = "/var/lib/schemareg"
    db_filename: str = "registry.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @property
    def db_path(self) -> Path:
        return Path(self.data_dir) / self.db_filename

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORAGE_BACKEND", "sqlite").lower()
        try:
            backend = StorageBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORAGE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            ) from None
        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/schemareg"),
            db_filename=os.getenv("REGISTRY_DB_FILE", "registry.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class RegistryConfig:
    """Registration behaviour.

    Attributes:
        dedup_mode: Idempotence target for repeated registrations
        default_format: Format assumed when a request declares none
        max_versions_per_subject: Version cap per subject (0 = unlimited)
        seed_file: Snapshot JSON restored into empty stores at startup
    """

    dedup_mode: DedupMode = DedupMode.LATEST
    default_format: str = "AVRO"
    max_versions_per_subject: int = 0
    seed_file: str | None = None

    @classmethod
    def from_env(cls) -> RegistryConfig:
        """Load configuration from environment variables."""
        mode_str = os.getenv("REGISTRY_DEDUP_MODE", "latest").lower()
        try:
            dedup_mode = DedupMode(mode_str)
        except ValueError:
            raise ValueError(
                f"Invalid REGISTRY_DEDUP_MODE '{mode_str}'. Must be one of: latest, any"
            ) from None
        max_versions = int(os.getenv("REGISTRY_MAX_VERSIONS", "0"))
        if max_versions < 0:
            raise ValueError("REGISTRY_MAX_VERSIONS must be >= 0")
        return cls(
            dedup_mode=dedup_mode,
            default_format=os.getenv("REGISTRY_DEFAULT_FORMAT", "AVRO").upper(),
            max_versions_per_subject=max_versions,
            seed_file=os.getenv("REGISTRY_SEED_FILE") or None,
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    This aggregates all configuration sections and provides validation.

    Attributes:
        http: HTTP server configuration
        storage: Storage configuration
        registry: Registration behaviour
        observability: Logging configuration
    """

    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            registry=RegistryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")

        if self.registry.default_format not in {f.value for f in SchemaFormat}:
            raise ValueError(
                f"Invalid REGISTRY_DEFAULT_FORMAT '{self.registry.default_format}'. "
                f"Must be one of: {', '.join(f.value for f in SchemaFormat)}"
            )

        if self.registry.max_versions_per_subject < 0:
            raise ValueError("REGISTRY_MAX_VERSIONS must be >= 0")

        if self.registry.seed_file and not os.path.exists(self.registry.seed_file):
            raise ValueError(f"REGISTRY_SEED_FILE does not exist: {self.registry.seed_file}")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(f"Invalid LOG_FORMAT '{self.observability.log_format}'")

        if self.storage.backend == StorageBackend.SQLITE:
            if not self.storage.db_filename:
                raise ValueError("REGISTRY_DB_FILE is required when STORAGE_BACKEND=sqlite")
            if not os.path.exists(self.storage.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.storage.data_dir}. "
                    "It will be created on first write."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "http_bind": f"{self.http.host}:{self.http.port}",
                "storage_backend": self.storage.backend.value,
                "db_path": str(self.storage.db_path)
                if self.storage.backend == StorageBackend.SQLITE
                else None,
                "dedup_mode": self.registry.dedup_mode.value,
                "default_format": self.registry.default_format,
                "max_versions_per_subject": self.registry.max_versions_per_subject,
                "seed_file": self.registry.seed_file,
                "log_level": self.observability.log_level,
            },
        )
