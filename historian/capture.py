"""
Snapshot capture and diff computation.

On every tracked mutation this module turns the entity's current state and
its previous materialized state into a pair of normalized snapshots and
diffs them.

Invariants:
    - Snapshots are plain JSON values with sorted keys
    - The reserved metadata key, the revision counter and ignored fields
      never reach a diff
    - A failing previous-state lookup means "no previous state" ({}); it
      never fails the mutation
    - A failing diff always fails the mutation

How to change safely:
    - Normalization changes alter every subsequent diff; a field that
      suddenly stops being ignored shows up as an add in the next record
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from .config import HistoryConfig
from .diff import DiffEngine
from .errors import DiffError, HistorianError
from .metadata import HistoryMetadata

logger = logging.getLogger(__name__)

PreviousStateLoader = Callable[[str, str], Awaitable[Optional[Mapping[str, Any]]]]


@dataclass
class Capture:
    """Outcome of capturing one mutation.

    Attributes:
        collection_name: Logical collection the record belongs to
        entity_id: Id of the tracked entity
        previous: Normalized previous state
        current: Normalized current state
        diff: Diff to record (the full previous state when snapshot is True)
        metadata: Pending metadata, if any
        forced: Whether the capture came from a removal
        save_without_diff: Method tag exempts this mutation from the
            empty-diff check
        snapshot: diff holds a full state rather than a diff
    """

    collection_name: str
    entity_id: str
    previous: Dict[str, Any]
    current: Dict[str, Any]
    diff: Any
    metadata: Optional[HistoryMetadata]
    forced: bool = False
    save_without_diff: bool = False
    snapshot: bool = False


class SnapshotCapture:
    """Computes normalized snapshots and the diff between them.

    Attributes:
        config: History options
        engine: Diff engine
        load_previous: Coroutine returning the previous state for
            (host collection, entity_id), or None
    """

    def __init__(
        self,
        config: HistoryConfig,
        engine: DiffEngine,
        load_previous: PreviousStateLoader,
    ) -> None:
        self.config = config
        self.engine = engine
        self.load_previous = load_previous

    def should_attempt(self, metadata: Optional[HistoryMetadata]) -> bool:
        """Whether a mutation is tracked at all."""
        return metadata is not None or self.config.no_event_save

    def entity_id(self, document: Mapping[str, Any]) -> str:
        """String id of a tracked document.

        Raises:
            HistorianError: If the document has no id
        """
        value = document.get(self.config.id_field)
        if value is None or value == "":
            raise HistorianError(
                f"Tracked document has no '{self.config.id_field}' field",
                code="MISSING_ENTITY_ID",
            )
        return str(value)

    def normalize(self, document: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Plain, sorted-key snapshot without transient fields.

        Raises:
            DiffError: If the document cannot be serialized
        """
        if not document:
            return {}
        try:
            plain = json.loads(json.dumps(document, default=str, sort_keys=True))
        except (TypeError, ValueError) as e:
            raise DiffError(f"Document cannot be serialized: {e}") from e

        plain.pop(self.config.metadata_field, None)
        plain.pop(self.config.revision_field, None)
        for name in self.config.ignore:
            plain.pop(name, None)
        return plain

    async def previous_state(self, collection: str, entity_id: str) -> Dict[str, Any]:
        """Previous materialized state, or {} when none can be obtained."""
        try:
            previous = await self.load_previous(collection, entity_id)
        except Exception as e:
            logger.warning(
                f"Previous state lookup failed, diffing against empty state: {e}",
                extra={"collection": collection, "collection_id": entity_id},
            )
            return {}
        return self.normalize(previous)

    async def capture(
        self,
        collection: str,
        document: Mapping[str, Any],
        metadata: Optional[HistoryMetadata],
        forced: bool = False,
    ) -> Capture:
        """Capture one mutation of ``document``.

        Args:
            collection: Host collection of the document
            document: Current state of the entity
            metadata: Pending metadata for this mutation
            forced: True for removals

        Returns:
            Capture with normalized states and the diff to record

        Raises:
            DiffError: If the diff cannot be computed
        """
        collection_name = self.config.logical_name(collection)
        entity_id = self.entity_id(document)

        previous = await self.previous_state(collection, entity_id)
        current = self.normalize(document)

        try:
            diff = self.engine.diff(previous, current)
        except DiffError:
            raise
        except Exception as e:
            raise DiffError(f"Diff computation failed: {e}") from e

        result = Capture(
            collection_name=collection_name,
            entity_id=entity_id,
            previous=previous,
            current=current,
            diff=diff,
            metadata=metadata,
            forced=forced,
        )

        if (
            metadata is not None
            and metadata.method
            and metadata.method in self.config.no_diff_save_on_methods
        ):
            result.save_without_diff = True
            if forced:
                result.diff = previous
                result.snapshot = True

        return result
