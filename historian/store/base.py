"""
Base protocol and types for history store backends.

This module defines the HistoryStore protocol that all backends must
implement, along with the record and query types they exchange.

Invariants:
    - Records are partitioned by (collection_name, collection_id)
    - record_id and timestamp are assigned by the store at insert time
    - Records of one entity are ordered by timestamp, ties broken by
      insertion order
    - Stored records are never updated or deleted

How to change safely:
    - Protocol changes require updating all implementations
    - New record fields must default to None and be omitted when absent
"""

from __future__ import annotations

import copy
from abc import abstractmethod
from dataclasses import dataclass, field, fields, replace
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import HistorianConfig, HistoryConfig

# Fields stripped from every projected (select) result
IDENTITY_FIELDS = ("record_id", "collection_name", "collection_id")

# Fields a HistoryQuery may filter, select or sort on
QUERYABLE_FIELDS = (
    "record_id",
    "collection_name",
    "collection_id",
    "diff",
    "version",
    "timestamp",
    "event",
    "reason",
    "data",
    "user",
    "account",
    "method",
    "snapshot",
)

SORTABLE_FIELDS = ("timestamp", "version")

POPULATABLE_FIELDS = ("user", "account")

UNCHECKED = object()


@dataclass(frozen=True)
class HistoryRecord:
    """One immutable diff + version + metadata entry.

    Attributes:
        record_id: Store-assigned identifier
        collection_name: Logical name of the tracked entity's kind
        collection_id: Id of the tracked entity
        diff: Diff from the previous materialized state (or the full
            previous state when snapshot is True)
        version: Semantic version string
        timestamp: Write time (Unix ms), assigned by the store
        event: Event name from pending metadata
        reason: Free-text reason from pending metadata
        data: Structured data from pending metadata
        user: Actor reference from pending metadata
        account: Account reference
        method: Method tag from pending metadata
        snapshot: True when diff holds a full state instead of a diff

    Projected query results leave unselected fields as None.
    """

    record_id: Optional[str] = None
    collection_name: Optional[str] = None
    collection_id: Optional[str] = None
    diff: Any = None
    version: Optional[str] = None
    timestamp: Optional[int] = None
    event: Optional[str] = None
    reason: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    user: Any = None
    account: Any = None
    method: Optional[str] = None
    snapshot: bool = False

    def project(self, select: Sequence[str]) -> HistoryRecord:
        """Keep only the selected fields; identity fields are always dropped."""
        keep = set(select) - set(IDENTITY_FIELDS)
        values = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name in keep
        }
        return HistoryRecord(**values)

    def to_dict(self, field_names: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Convert to dictionary, omitting absent fields.

        Args:
            field_names: Optional renames for user/account/timestamp/method

        Returns:
            Dictionary using the bound field names
        """
        names = field_names or {}
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None or (f.name == "snapshot" and not value):
                continue
            result[names.get(f.name, f.name)] = copy.deepcopy(value)
        return result

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        field_names: Optional[Mapping[str, str]] = None,
    ) -> HistoryRecord:
        """Create from a dictionary produced by to_dict()."""
        renamed = {bound: attr for attr, bound in (field_names or {}).items()}
        values = {}
        for key, value in data.items():
            attr = renamed.get(key, key)
            if attr in QUERYABLE_FIELDS:
                values[attr] = value
        return cls(**values)

    def stamped(self, record_id: str, timestamp: int) -> HistoryRecord:
        """Copy with store-assigned id and timestamp."""
        return replace(self, record_id=record_id, timestamp=timestamp)


@dataclass(frozen=True)
class HistoryQuery:
    """Filter, projection, ordering and pagination for history reads.

    Attributes:
        find: Equality filters on record fields
        select: Fields to keep in results (None keeps everything)
        sort: "timestamp", "-timestamp", "version" or "-version"
        limit: Maximum records to return (None for all)
        skip: Records to skip before returning
        populate: Reference fields ("user", "account") to resolve
    """

    find: Mapping[str, Any] = field(default_factory=dict)
    select: Optional[Tuple[str, ...]] = None
    sort: Optional[str] = None
    limit: Optional[int] = None
    skip: int = 0
    populate: Tuple[str, ...] = ()

    def scoped(self, **filters: Any) -> HistoryQuery:
        """Copy with extra equality filters that override caller filters."""
        merged = dict(self.find)
        merged.update(filters)
        return replace(self, find=merged)

    def with_default_sort(self, sort: str) -> HistoryQuery:
        """Copy with ``sort`` applied unless the caller already chose one."""
        if self.sort:
            return self
        return replace(self, sort=sort)

    def normalized(self, config: Optional[HistoryConfig] = None) -> HistoryQuery:
        """Resolve bound field names back to record attributes and validate.

        Raises:
            ValueError: If a filter, selection or sort names an unknown field
        """
        renamed: Dict[str, str] = {}
        if config is not None:
            renamed = {bound: attr for attr, bound in config.record_field_names.items()}

        find = {}
        for key, value in self.find.items():
            attr = renamed.get(key, key)
            if attr not in QUERYABLE_FIELDS:
                raise ValueError(f"Unknown history field in filter: {key}")
            find[attr] = value

        select = None
        if self.select is not None:
            select = tuple(renamed.get(name, name) for name in self.select)
            unknown = [name for name in select if name not in QUERYABLE_FIELDS]
            if unknown:
                raise ValueError(f"Unknown history fields in select: {unknown}")

        sort = None
        if self.sort:
            descending = self.sort.startswith("-")
            name = self.sort.lstrip("-")
            attr = renamed.get(name, name)
            if attr not in SORTABLE_FIELDS:
                raise ValueError(f"Cannot sort history by: {self.sort}")
            sort = f"-{attr}" if descending else attr

        populate = tuple(renamed.get(name, name) for name in self.populate)
        unknown = [name for name in populate if name not in POPULATABLE_FIELDS]
        if unknown:
            raise ValueError(f"Cannot populate history fields: {unknown}")

        if self.limit is not None and self.limit < 0:
            raise ValueError("limit must be non-negative")
        if self.skip < 0:
            raise ValueError("skip must be non-negative")

        return replace(self, find=find, select=select, sort=sort, populate=populate)

    @property
    def sort_field(self) -> str:
        return (self.sort or "timestamp").lstrip("-")

    @property
    def descending(self) -> bool:
        return bool(self.sort) and self.sort.startswith("-")


@runtime_checkable
class HistoryStore(Protocol):
    """Protocol for history store backends.

    Durability contract:
        - insert() returns only after the record is stored
        - Backend errors propagate unchanged

    Ordering contract:
        - find() honors the query's sort; ties on timestamp (and on
          version) resolve by insertion order

    Example:
        >>> store = InMemoryHistoryStore()
        >>> await store.initialize()
        >>> record = await store.insert(HistoryRecord(
        ...     collection_name="tank", collection_id="t1", diff=[], version="0.0.0"))
        >>> record.record_id is not None
        True
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create schema, open resources)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources."""
        ...

    @abstractmethod
    async def insert(
        self,
        record: HistoryRecord,
        *,
        expected_previous: Any = UNCHECKED,
    ) -> HistoryRecord:
        """Append a record.

        Args:
            record: Record without record_id/timestamp
            expected_previous: When given, the append only succeeds if the
                entity's latest version still equals this value (None means
                "no records yet")

        Returns:
            The stored record with record_id and timestamp assigned

        Raises:
            VersionConflictError: If expected_previous no longer holds
            HistoryStoreError: If the store is not initialized
        """
        ...

    @abstractmethod
    async def find(self, query: HistoryQuery) -> List[HistoryRecord]:
        """Return records matching ``query`` in the requested order."""
        ...

    @abstractmethod
    async def find_one(self, query: HistoryQuery) -> Optional[HistoryRecord]:
        """Return the first record matching ``query`` or None."""
        ...

    @abstractmethod
    async def latest_version(
        self,
        collection_name: str,
        collection_id: str,
    ) -> Optional[str]:
        """Version of the entity's most recent record, or None."""
        ...


def create_history_store(config: "HistorianConfig") -> HistoryStore:
    """Factory function to create a history store from configuration.

    Args:
        config: Historian configuration

    Returns:
        Appropriate HistoryStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryHistoryStore
    from .sqlite import SqliteHistoryStore

    if config.store_backend == StoreBackend.MEMORY:
        return InMemoryHistoryStore()
    elif config.store_backend == StoreBackend.SQLITE:
        return SqliteHistoryStore(
            data_dir=config.storage.data_dir,
            db_name=config.storage.db_name,
            table=config.history.collection,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
