"""
Configuration management for Historian.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Field-name bindings are resolved once, at startup, never per call
    - Comma-separated list settings ignore blank entries

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Renaming a bound field name changes how records render, not how
      they are stored; old records keep replaying
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported history store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class HistoryConfig:
    """History tracking options for one family of tracked entities.

    Attributes:
        collection: Name of the history collection/table
        embedded: Whether tracked entities live inside a parent aggregate
        embedded_collection: Logical collection alias for embedded entities
        user_collection: Collection that user references point into
        account_collection: Collection that account references point into
        user_field: Record field name for the actor reference
        account_field: Record field name for the account reference
        timestamp_field: Record field name for the write timestamp
        method_field: Record field name for the method tag
        id_field: Entity field holding the entity id
        revision_field: Internal revision counter stripped from snapshots
        metadata_field: Reserved document key for pending history metadata
        ignore: Entity fields excluded from diffs
        no_diff_save: Persist a record even when nothing changed
        no_diff_save_on_methods: Method tags that force a record regardless of diff
        no_event_save: Record every mutation, not only ones carrying metadata
        atomic_append: Fail commits whose version lookup raced another writer
    """

    collection: str = "__histories"
    embedded: bool = False
    embedded_collection: str = ""
    user_collection: str = "users"
    account_collection: str = "accounts"
    user_field: str = "user"
    account_field: str = "account"
    timestamp_field: str = "timestamp"
    method_field: str = "method"
    id_field: str = "_id"
    revision_field: str = "__v"
    metadata_field: str = "__history"
    ignore: tuple[str, ...] = ()
    no_diff_save: bool = False
    no_diff_save_on_methods: tuple[str, ...] = ()
    no_event_save: bool = True
    atomic_append: bool = False

    @classmethod
    def from_env(cls) -> HistoryConfig:
        """Load configuration from environment variables."""
        return cls(
            collection=os.getenv("HISTORY_COLLECTION", "__histories"),
            embedded=_env_bool("HISTORY_EMBEDDED", False),
            embedded_collection=os.getenv("HISTORY_EMBEDDED_COLLECTION", ""),
            user_collection=os.getenv("HISTORY_USER_COLLECTION", "users"),
            account_collection=os.getenv("HISTORY_ACCOUNT_COLLECTION", "accounts"),
            user_field=os.getenv("HISTORY_USER_FIELD", "user"),
            account_field=os.getenv("HISTORY_ACCOUNT_FIELD", "account"),
            timestamp_field=os.getenv("HISTORY_TIMESTAMP_FIELD", "timestamp"),
            method_field=os.getenv("HISTORY_METHOD_FIELD", "method"),
            id_field=os.getenv("HISTORY_ID_FIELD", "_id"),
            revision_field=os.getenv("HISTORY_REVISION_FIELD", "__v"),
            metadata_field=os.getenv("HISTORY_METADATA_FIELD", "__history"),
            ignore=_env_list("HISTORY_IGNORE"),
            no_diff_save=_env_bool("HISTORY_NO_DIFF_SAVE", False),
            no_diff_save_on_methods=_env_list("HISTORY_NO_DIFF_SAVE_ON_METHODS"),
            no_event_save=_env_bool("HISTORY_NO_EVENT_SAVE", True),
            atomic_append=_env_bool("HISTORY_ATOMIC_APPEND", False),
        )

    def logical_name(self, collection: str) -> str:
        """Collection name recorded on history entries.

        Embedded entities are recorded under the configured alias, never
        under the parent aggregate's collection.
        """
        return self.embedded_collection if self.embedded else collection

    @property
    def record_field_names(self) -> dict[str, str]:
        """Mapping of record attribute name to rendered field name."""
        return {
            "user": self.user_field,
            "account": self.account_field,
            "timestamp": self.timestamp_field,
            "method": self.method_field,
        }

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.collection:
            raise ValueError("HISTORY_COLLECTION must not be empty")

        if self.embedded and not self.embedded_collection:
            raise ValueError(
                "HISTORY_EMBEDDED_COLLECTION is required when HISTORY_EMBEDDED=true"
            )

        bound = list(self.record_field_names.values())
        if len(set(bound)) != len(bound):
            raise ValueError(f"History field names must be distinct, got {bound}")


@dataclass(frozen=True)
class StorageConfig:
    """SQLite history store configuration.

    Attributes:
        data_dir: Directory for the history database
        db_name: History database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/historian"
    db_name: str = "history.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/historian"),
            db_name=os.getenv("HISTORY_DB_NAME", "history.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", True),
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
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class HistorianConfig:
    """Complete Historian configuration.

    Attributes:
        store_backend: Which history store backend to use
        history: History tracking options
        storage: SQLite storage configuration (if store_backend is SQLITE)
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.MEMORY
    history: HistoryConfig = field(default_factory=HistoryConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> HistorianConfig:
        """Load complete configuration from environment variables.

        Returns:
            HistorianConfig with all sections populated from environment.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        backend_str = os.getenv("HISTORY_STORE", "memory").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid HISTORY_STORE '{backend_str}'. Must be one of: memory, sqlite"
            )

        config = cls(
            store_backend=store_backend,
            history=HistoryConfig.from_env(),
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
        self.history.validate()

        if self.store_backend == StoreBackend.SQLITE:
            if not self.storage.data_dir:
                raise ValueError("DATA_DIR is required when HISTORY_STORE=sqlite")
            if not os.path.exists(self.storage.data_dir):
                logger.warning(
                    f"Data directory does not exist: {self.storage.data_dir}. "
                    "It will be created on first write."
                )

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be json or text"
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Historian configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "history_collection": self.history.collection,
                "embedded_collection": self.history.embedded_collection
                if self.history.embedded
                else None,
                "data_dir": self.storage.data_dir
                if self.store_backend == StoreBackend.SQLITE
                else None,
                "no_event_save": self.history.no_event_save,
                "atomic_append": self.history.atomic_append,
                "log_level": self.observability.log_level,
            },
        )
