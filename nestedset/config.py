"""
Configuration management for nestedset.

All configuration is done via environment variables; the CLI may override a
few values with flags. This module provides typed configuration classes with
validation.

Invariants:
    - All settings have sensible defaults for local development
    - The grouping key never names a structural field (id, parent_id, lft, rgt, lvl)
    - Collection names are plain SQL identifiers

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Changing the grouping key of an existing collection requires a rebuild
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

STRUCTURAL_FIELDS = ("id", "parent_id", "lft", "rgt", "lvl")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class StoreBackend(Enum):
    """Supported record store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


@dataclass(frozen=True)
class TreeSettings:
    """Nested-set behaviour.

    Attributes:
        grouping_key: Payload field partitioning the collection into forests
        serialize_writes: Hold a per-forest lock around structural mutations
    """

    grouping_key: str | None = None
    serialize_writes: bool = True

    @classmethod
    def from_env(cls) -> TreeSettings:
        """Load configuration from environment variables."""
        return cls(
            grouping_key=os.getenv("NESTEDSET_GROUPING_KEY") or None,
            serialize_writes=_env_bool("NESTEDSET_SERIALIZE_WRITES", "true"),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Record store configuration.

    Attributes:
        backend: Which store implementation to use
        db_path: SQLite database file
        collection: Table holding the nodes
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StoreBackend = StoreBackend.SQLITE
    db_path: str = "nestedset.db"
    collection: str = "nodes"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If NESTEDSET_STORE names an unknown backend.
        """
        backend_str = os.getenv("NESTEDSET_STORE", "sqlite").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid NESTEDSET_STORE '{backend_str}'. Must be one of: memory, sqlite"
            )

        return cls(
            backend=backend,
            db_path=os.getenv("NESTEDSET_DB_PATH", "nestedset.db"),
            collection=os.getenv("NESTEDSET_COLLECTION", "nodes"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class TreeConfig:
    """Complete configuration.

    Attributes:
        tree: Nested-set behaviour
        storage: Record store configuration
        observability: Logging configuration
    """

    tree: TreeSettings = field(default_factory=TreeSettings)
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> TreeConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            tree=TreeSettings.from_env(),
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        grouping_key = self.tree.grouping_key
        if grouping_key is not None:
            if grouping_key in STRUCTURAL_FIELDS:
                raise ValueError(
                    f"NESTEDSET_GROUPING_KEY '{grouping_key}' collides with a structural field"
                )
            if not _IDENTIFIER_RE.match(grouping_key):
                raise ValueError(f"Invalid NESTEDSET_GROUPING_KEY '{grouping_key}'")

        if not _IDENTIFIER_RE.match(self.storage.collection):
            raise ValueError(f"Invalid NESTEDSET_COLLECTION '{self.storage.collection}'")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if self.storage.backend == StoreBackend.SQLITE:
            db_dir = os.path.dirname(os.path.abspath(self.storage.db_path))
            if not os.path.exists(db_dir):
                logger.warning(
                    f"Database directory does not exist: {db_dir}. "
                    "It will be created on initialize."
                )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Tree configuration loaded",
            extra={
                "grouping_key": self.tree.grouping_key,
                "serialize_writes": self.tree.serialize_writes,
                "store_backend": self.storage.backend.value,
                "db_path": self.storage.db_path
                if self.storage.backend == StoreBackend.SQLITE
                else None,
                "collection": self.storage.collection,
                "log_level": self.observability.log_level,
            },
        )
