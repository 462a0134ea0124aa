"""
Record store collaborator for tracked entities.

History tracking reads tracked documents through the DocumentStore
protocol (point lookup by id) and is driven by the host's lifecycle
hooks. InMemoryDocumentStore is a small host that provides both, for:
- Unit and integration tests
- Local development and demos

Invariants:
    - Hooks run before the write; a failing hook aborts the write
    - Stored documents are copies; callers never share state with the store
    - save() assigns an id and bumps the revision counter

How to change safely:
    - This is test-support code; keep the hook order identical to
      what real hosts do (embedded hooks first, then the parent)
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections import defaultdict
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Protocol,
    Tuple,
    Union,
    runtime_checkable,
)

if TYPE_CHECKING:
    from .metadata import HistoryMetadata
    from .tracker import HistoryTracker

logger = logging.getLogger(__name__)


@runtime_checkable
class DocumentStore(Protocol):
    """Point lookup of tracked documents."""

    async def find_one(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Plain copy of the stored document, or None."""
        ...


class InMemoryDocumentStore:
    """In-memory document collections with before-save/before-delete hooks.

    Example:
        >>> docs = InMemoryDocumentStore()
        >>> docs.register("tank", tracker)
        >>> tank = await docs.save("tank", {"size": "small"})
        >>> tank["_id"] is not None
        True
    """

    def __init__(self, id_field: str = "_id", revision_field: str = "__v") -> None:
        self.id_field = id_field
        self.revision_field = revision_field
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._hooks: Dict[str, List[Tuple[HistoryTracker, Optional[str]]]] = defaultdict(list)
        self._lock = asyncio.Lock()

    def register(
        self,
        collection: str,
        tracker: HistoryTracker,
        path: Optional[str] = None,
    ) -> None:
        """Attach a history tracker to a collection.

        Args:
            collection: Collection name
            tracker: Tracker whose hooks run on save/delete
            path: For embedded trackers, the document key holding the
                list of embedded entities
        """
        self._hooks[collection].append((tracker, path))

    async def find_one(self, collection: str, entity_id: str) -> Optional[Dict[str, Any]]:
        document = self._collections.get(collection, {}).get(str(entity_id))
        return copy.deepcopy(document) if document is not None else None

    async def find(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in self._collections.get(collection, {}).values()]

    async def save(
        self,
        collection: str,
        document: MutableMapping[str, Any],
        metadata: Union[HistoryMetadata, Mapping[str, Any], None] = None,
    ) -> MutableMapping[str, Any]:
        """Run before-save hooks, then store a copy of ``document``.

        ``document`` is updated in place with its id and revision counter.

        Returns:
            The same ``document``
        """
        self._ensure_id(document)

        for tracker, path in self._hooks.get(collection, []):
            if path is None:
                await tracker.before_persist(collection, document, metadata)
                continue
            for item in document.get(path) or []:
                self._ensure_id(item)
                await tracker.before_persist(collection, item)

        async with self._lock:
            entity_id = str(document[self.id_field])
            existing = self._collections[collection].get(entity_id)
            revision = 0 if existing is None else existing.get(self.revision_field, 0) + 1
            document[self.revision_field] = revision
            self._collections[collection][entity_id] = copy.deepcopy(dict(document))

        logger.debug(
            "Saved document",
            extra={"collection": collection, "entity_id": entity_id, "revision": revision},
        )
        return document

    async def delete(
        self,
        collection: str,
        document: MutableMapping[str, Any],
        metadata: Union[HistoryMetadata, Mapping[str, Any], None] = None,
    ) -> bool:
        """Run before-delete hooks, then remove ``document``.

        Returns:
            True if deleted, False if not found
        """
        entity_id = str(document.get(self.id_field))
        if entity_id not in self._collections.get(collection, {}):
            return False

        for tracker, path in self._hooks.get(collection, []):
            if path is None:
                await tracker.before_remove(collection, document, metadata)
                continue
            for item in document.get(path) or []:
                await tracker.before_remove(collection, item)

        async with self._lock:
            deleted = self._collections[collection].pop(entity_id, None) is not None

        logger.debug("Deleted document", extra={"collection": collection, "entity_id": entity_id})
        return deleted

    def _ensure_id(self, document: MutableMapping[str, Any]) -> None:
        if not document.get(self.id_field):
            document[self.id_field] = uuid.uuid4().hex
