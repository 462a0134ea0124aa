"""
In-memory history store implementation.

This module provides a simple in-memory history backend for:
- Unit tests
- Integration tests
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Provides the same ordering guarantees as the SQLite backend
    - Safe for concurrent coroutines (asyncio lock around writes)

How to change safely:
    - Keep interface compatible with HistoryStore protocol
    - Keep ordering identical to SqliteHistoryStore; tests run on both
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..errors import HistoryStoreError, VersionConflictError
from ..versioning import version_key
from .base import UNCHECKED, HistoryQuery, HistoryRecord

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    """Stored record plus its insertion sequence number."""

    seq: int
    record: HistoryRecord


@dataclass
class InMemoryPartition:
    """In-memory storage for one (collection_name, collection_id)."""

    entries: List[_Entry] = field(default_factory=list)


class InMemoryHistoryStore:
    """In-memory implementation of HistoryStore.

    Records are kept per entity partition in insertion order. Reads copy
    records out so callers can never alter stored history.

    Example:
        >>> store = InMemoryHistoryStore()
        >>> await store.initialize()
        >>> await store.latest_version("tank", "t1") is None
        True
    """

    def __init__(self) -> None:
        self._partitions: Dict[Tuple[str, str], InMemoryPartition] = defaultdict(
            InMemoryPartition
        )
        self._next_seq = 0
        self._initialized = False
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Initialize (no-op for in-memory)."""
        self._initialized = True
        logger.debug("InMemoryHistoryStore initialized")

    async def close(self) -> None:
        """Close and clear all data."""
        self._initialized = False
        self._partitions.clear()
        logger.debug("InMemoryHistoryStore closed")

    async def insert(
        self,
        record: HistoryRecord,
        *,
        expected_previous: Any = UNCHECKED,
    ) -> HistoryRecord:
        """Append a record to its entity partition."""
        self._check_initialized()
        if record.collection_name is None or record.collection_id is None:
            raise HistoryStoreError("History record requires collection_name and collection_id")

        key = (record.collection_name, record.collection_id)

        async with self._lock:
            partition = self._partitions[key]

            if expected_previous is not UNCHECKED:
                actual = self._latest(partition)
                actual_version = actual.version if actual else None
                if actual_version != expected_previous:
                    raise VersionConflictError(
                        record.collection_name,
                        record.collection_id,
                        expected_previous,
                        actual_version,
                    )

            stored = copy.deepcopy(record).stamped(
                record_id=uuid.uuid4().hex,
                timestamp=int(time.time() * 1000),
            )
            partition.entries.append(_Entry(seq=self._next_seq, record=stored))
            self._next_seq += 1

        logger.debug(
            "History record appended to in-memory store",
            extra={
                "collection_name": stored.collection_name,
                "collection_id": stored.collection_id,
                "version": stored.version,
            },
        )

        return copy.deepcopy(stored)

    async def find(self, query: HistoryQuery) -> List[HistoryRecord]:
        """Return matching records in query order."""
        self._check_initialized()
        query = query.normalized()

        entries = [
            entry
            for entry in self._candidates(query)
            if all(getattr(entry.record, name) == value for name, value in query.find.items())
        ]

        if query.sort_field == "version":
            entries.sort(key=lambda e: (version_key(e.record.version), e.seq))
        else:
            entries.sort(key=lambda e: (e.record.timestamp, e.seq))
        if query.descending:
            entries.reverse()

        entries = entries[query.skip :]
        if query.limit:
            entries = entries[: query.limit]

        records = [copy.deepcopy(entry.record) for entry in entries]
        if query.select is not None:
            records = [record.project(query.select) for record in records]
        return records

    async def find_one(self, query: HistoryQuery) -> Optional[HistoryRecord]:
        """Return the first matching record or None."""
        records = await self.find(HistoryQuery(
            find=query.find,
            select=query.select,
            sort=query.sort,
            limit=1,
            skip=query.skip,
        ))
        return records[0] if records else None

    async def latest_version(
        self,
        collection_name: str,
        collection_id: str,
    ) -> Optional[str]:
        """Version of the newest record for the entity."""
        self._check_initialized()
        partition = self._partitions.get((collection_name, collection_id))
        if partition is None:
            return None
        latest = self._latest(partition)
        return latest.version if latest else None

    def _candidates(self, query: HistoryQuery) -> List[_Entry]:
        name = query.find.get("collection_name")
        entity_id = query.find.get("collection_id")
        if name is not None and entity_id is not None:
            partition = self._partitions.get((name, entity_id))
            return list(partition.entries) if partition else []
        return [entry for partition in self._partitions.values() for entry in partition.entries]

    @staticmethod
    def _latest(partition: InMemoryPartition) -> Optional[HistoryRecord]:
        if not partition.entries:
            return None
        newest = max(partition.entries, key=lambda e: (e.record.timestamp, e.seq))
        return newest.record

    def _check_initialized(self) -> None:
        if not self._initialized:
            raise HistoryStoreError("History store not initialized", code="NOT_INITIALIZED")

    # Testing helpers

    def get_record_count(self) -> int:
        """Total record count across all entities (testing helper)."""
        return sum(len(p.entries) for p in self._partitions.values())

    def get_all_records(self) -> List[HistoryRecord]:
        """All records in insertion order (testing helper)."""
        entries = [entry for p in self._partitions.values() for entry in p.entries]
        entries.sort(key=lambda e: e.seq)
        return [copy.deepcopy(entry.record) for entry in entries]
