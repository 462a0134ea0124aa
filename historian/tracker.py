"""
History tracking entry points.

HistoryTracker is what a host wires into its record lifecycle: it exposes
the "before persist" and "before remove" interception points and hands
out TrackedEntity handles for reading an entity's history.

Invariants:
    - Hooks either finish the commit or raise; the host must abort its
      write when a hook raises
    - Every TrackedEntity read is scoped to one (collection_name, entity_id)
    - Nothing read from the store is cached between calls

How to change safely:
    - Hooks run on the host's write path; keep them free of extra store
      round trips beyond previous-state lookup, version lookup and append
    - Read API changes must keep the default orders (diffs newest first,
      versions oldest first)
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Union

from .capture import SnapshotCapture
from .commit import CommitPolicy
from .config import HistoryConfig
from .diff import DiffEngine, JsonPatchDiffEngine
from .documents import DocumentStore
from .metadata import HistoryMetadata, resolve_metadata
from .replay import CompareResult, ReplayEngine, VersionResult
from .store import HistoryQuery, HistoryRecord, HistoryStore

logger = logging.getLogger(__name__)

MetadataArg = Union[HistoryMetadata, Mapping[str, Any], None]


class TrackedEntity:
    """Read access to one entity's history.

    Attributes:
        tracker: Owning tracker
        collection_name: Logical collection of the entity
        entity_id: Entity id

    Example:
        >>> tank = tracker.entity("tank", tank_id)
        >>> diffs = await tank.get_diffs()
        >>> v1 = await tank.get_version("1.0.0")
        >>> v1.object
        {'_id': '...', 'size': 'large'}
    """

    def __init__(self, tracker: HistoryTracker, collection_name: str, entity_id: str) -> None:
        self.tracker = tracker
        self.collection_name = collection_name
        self.entity_id = entity_id

    @property
    def config(self) -> HistoryConfig:
        return self.tracker.config

    def _scope(self, query: Optional[HistoryQuery], default_sort: str, **filters: Any) -> HistoryQuery:
        return (
            (query or HistoryQuery())
            .normalized(self.config)
            .scoped(
                collection_name=self.collection_name,
                collection_id=self.entity_id,
                **filters,
            )
            .with_default_sort(default_sort)
        )

    async def get_diffs(self, query: Optional[HistoryQuery] = None) -> List[HistoryRecord]:
        """Raw history records, newest first unless ``query`` sorts otherwise.

        Args:
            query: Optional filter/projection/sort/pagination

        Returns:
            Records of this entity
        """
        scoped = self._scope(query, "-timestamp")
        records = await self.tracker.history_store.find(scoped)
        if scoped.populate:
            records = [await self.tracker.populate(record, scoped.populate) for record in records]
        return records

    async def get_diff(
        self,
        version: str,
        query: Optional[HistoryQuery] = None,
    ) -> Optional[HistoryRecord]:
        """The record at exactly ``version``, or None."""
        scoped = self._scope(query, "-timestamp", version=version)
        record = await self.tracker.history_store.find_one(scoped)
        if record is not None and scoped.populate:
            record = await self.tracker.populate(record, scoped.populate)
        return record

    async def get_version(self, version: str, include_snapshot: bool = True) -> VersionResult:
        """The entity as of ``version``, clamped to the recorded range.

        Raises:
            NoHistoryError: If the entity has no history at all
            InvalidVersionError: If ``version`` is malformed
        """
        records = await self.get_diffs(HistoryQuery(sort="timestamp"))
        return self.tracker.replay.replay_to(
            records,
            version,
            collection_name=self.collection_name,
            collection_id=self.entity_id,
            include_snapshot=include_snapshot,
        )

    async def get_versions(
        self,
        query: Optional[HistoryQuery] = None,
        include_snapshot: bool = True,
    ) -> List[VersionResult]:
        """Every recorded version, oldest first unless ``query`` sorts otherwise.

        With include_snapshot, each result carries the state replayed up
        to it; otherwise each carries its raw diff.
        """
        query = (query or HistoryQuery()).with_default_sort("timestamp")
        if include_snapshot and query.select is not None:
            query = replace(query, select=tuple(set(query.select) | {"diff", "version", "snapshot"}))

        records = await self.get_diffs(query)
        if not include_snapshot:
            return [VersionResult.from_record(record, include_diff=True) for record in records]
        return self.tracker.replay.replay_all(records)

    async def compare_versions(self, version_left: str, version_right: str) -> CompareResult:
        """Diff the snapshots at two versions.

        Raises:
            NoHistoryError: If the entity has no history at all
        """
        records = await self.get_diffs(HistoryQuery(sort="timestamp"))
        return self.tracker.replay.compare(
            records,
            version_left,
            version_right,
            collection_name=self.collection_name,
            collection_id=self.entity_id,
        )


class HistoryTracker:
    """Versioned history for one family of tracked entities.

    The tracker is configured once, at startup, and then invoked from the
    host's lifecycle hooks:

        before_persist: every save of a tracked entity
        before_remove:  every delete of a tracked entity (forced commit)

    Attributes:
        config: History options
        history_store: Where history records live
        document_store: Point lookup for top-level entities (not needed
            in embedded mode)
        engine: Diff engine

    Example:
        >>> tracker = HistoryTracker(HistoryConfig(), store, documents)
        >>> record = await tracker.before_persist("tank", {"_id": "t1", "size": "small"})
        >>> record.version
        '0.0.0'
    """

    def __init__(
        self,
        config: Optional[HistoryConfig] = None,
        history_store: Optional[HistoryStore] = None,
        document_store: Optional[DocumentStore] = None,
        diff_engine: Optional[DiffEngine] = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            config: History options (defaults if not provided)
            history_store: History store (must be initialized by the caller)
            document_store: Document lookup for previous states
            diff_engine: Diff engine (JSON Patch if not provided)

        Raises:
            ValueError: If the configuration is invalid or a required
                collaborator is missing
        """
        self.config = config or HistoryConfig()
        self.config.validate()

        if history_store is None:
            raise ValueError("history_store is required")
        if document_store is None and not self.config.embedded:
            raise ValueError("document_store is required unless tracking embedded entities")

        self.history_store = history_store
        self.document_store = document_store
        self.engine = diff_engine or JsonPatchDiffEngine()

        self.capture = SnapshotCapture(self.config, self.engine, self._load_previous)
        self.policy = CommitPolicy(self.config, self.history_store, self.engine)
        self.replay = ReplayEngine(self.engine)

    def entity(self, collection: str, entity_id: Any) -> TrackedEntity:
        """History handle for an entity of ``collection``."""
        return TrackedEntity(self, self.config.logical_name(collection), str(entity_id))

    def for_document(self, collection: str, document: Mapping[str, Any]) -> TrackedEntity:
        """History handle for a tracked document."""
        return self.entity(collection, self.capture.entity_id(document))

    async def before_persist(
        self,
        collection: str,
        document: MutableMapping[str, Any],
        metadata: MetadataArg = None,
    ) -> Optional[HistoryRecord]:
        """Record the pending save of ``document``.

        Returns:
            The stored record, or None if nothing was recorded

        Raises:
            DiffError: If the diff cannot be computed
            HistorianError: For any other failure; the host must abort the save
        """
        return await self._on_mutation(collection, document, metadata, forced=False)

    async def before_remove(
        self,
        collection: str,
        document: MutableMapping[str, Any],
        metadata: MetadataArg = None,
    ) -> Optional[HistoryRecord]:
        """Record the pending removal of ``document``."""
        return await self._on_mutation(collection, document, metadata, forced=True)

    async def _on_mutation(
        self,
        collection: str,
        document: MutableMapping[str, Any],
        metadata: MetadataArg,
        forced: bool,
    ) -> Optional[HistoryRecord]:
        pending = resolve_metadata(document, metadata, self.config)
        if not self.capture.should_attempt(pending):
            logger.debug(
                "Mutation without history metadata not tracked",
                extra={"collection": collection, "forced": forced},
            )
            return None

        capture = await self.capture.capture(collection, document, pending, forced=forced)
        return await self.policy.commit(capture, document)

    async def _load_previous(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Previous materialized state of an entity.

        Embedded entities have no point lookup, and in events-only mode
        the stored document may hold changes that were never recorded.
        In both cases the entity's own history is replayed to its latest
        snapshot, so every recorded diff applies to the replayed chain.
        """
        if self.config.embedded or not self.config.no_event_save:
            entity = self.entity(collection, entity_id)
            records = await entity.get_diffs(HistoryQuery(sort="timestamp"))
            return self.replay.latest(records) if records else None

        assert self.document_store is not None
        return await self.document_store.find_one(collection, entity_id)

    async def populate(self, record: HistoryRecord, names: tuple[str, ...]) -> HistoryRecord:
        """Replace user/account references with the referenced documents.

        References that cannot be resolved are left as they are.
        """
        if self.document_store is None:
            return record

        targets = {
            "user": self.config.user_collection,
            "account": self.config.account_collection,
        }
        resolved: Dict[str, Any] = {}
        for name in names:
            ref = getattr(record, name)
            if ref is None:
                continue
            document = await self.document_store.find_one(targets[name], str(ref))
            if document is not None:
                resolved[name] = document
        return replace(record, **resolved) if resolved else record
