"""
Commit policy: decide whether a capture becomes a history record.

A capture is persisted when its diff is non-empty, when the configuration
asks for records on unchanged saves (no_diff_save), or when the mutation's
method tag is exempt from the empty-diff check.

Invariants:
    - The version lookup happens before the append
    - Metadata fields are copied only when metadata was given, and absent
      values are omitted, never stored as explicit nulls
    - Side-channel metadata is cleared once the record is built

Concurrency:
    Version allocation reads the latest version and then appends. Two
    concurrent commits for the same entity can both read the same latest
    version. With atomic_append enabled the append is conditional on the
    latest version still matching, and the losing commit fails with
    VersionConflictError instead of writing a duplicate version.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional

from .capture import Capture
from .config import HistoryConfig
from .diff import DiffEngine
from .metadata import clear_metadata
from .store import HistoryRecord, HistoryStore
from .versioning import BumpClass, next_version

logger = logging.getLogger(__name__)


class CommitPolicy:
    """Persists captures as versioned history records.

    Attributes:
        config: History options
        store: History store to append to
        engine: Diff engine (for the emptiness check)
    """

    def __init__(
        self,
        config: HistoryConfig,
        store: HistoryStore,
        engine: DiffEngine,
    ) -> None:
        self.config = config
        self.store = store
        self.engine = engine

    def should_persist(self, capture: Capture) -> bool:
        """Whether ``capture`` is worth a history record."""
        return (
            not self.engine.is_empty(capture.diff)
            or self.config.no_diff_save
            or capture.save_without_diff
        )

    def build_record(
        self,
        capture: Capture,
        version: str,
        document: Optional[MutableMapping[str, Any]] = None,
    ) -> HistoryRecord:
        """Build the record for ``capture`` at ``version``.

        The account reference comes from the entity's own account field
        when it has one, else from the metadata.
        """
        values: dict[str, Any] = {
            "collection_name": capture.collection_name,
            "collection_id": capture.entity_id,
            "diff": capture.diff,
            "version": version,
            "snapshot": capture.snapshot,
        }

        metadata = capture.metadata
        if metadata is not None:
            own_account = document.get(self.config.account_field) if document else None
            values.update(
                event=metadata.event,
                reason=metadata.reason,
                data=metadata.data,
                user=metadata.user,
                account=own_account or metadata.account,
                method=metadata.method,
            )

        return HistoryRecord(**{k: v for k, v in values.items() if v is not None})

    async def commit(
        self,
        capture: Capture,
        document: Optional[MutableMapping[str, Any]] = None,
    ) -> Optional[HistoryRecord]:
        """Persist ``capture`` if the policy allows it.

        Args:
            capture: Result of SnapshotCapture.capture()
            document: The mutated document; its side-channel metadata is
                cleared when a record is written

        Returns:
            The stored record, or None if the capture was skipped

        Raises:
            InvalidVersionError: If the stored version or bump class is malformed
            VersionConflictError: If atomic_append is on and another writer won
        """
        if not self.should_persist(capture):
            logger.debug(
                "Skipped history commit, nothing changed",
                extra={
                    "collection_name": capture.collection_name,
                    "collection_id": capture.entity_id,
                },
            )
            return None

        previous = await self.store.latest_version(capture.collection_name, capture.entity_id)
        bump = capture.metadata.bump if capture.metadata is not None else BumpClass.MAJOR
        version = next_version(previous, bump)

        record = self.build_record(capture, version, document)

        if document is not None:
            clear_metadata(document, self.config)

        if self.config.atomic_append:
            stored = await self.store.insert(record, expected_previous=previous)
        else:
            stored = await self.store.insert(record)

        logger.debug(
            "Committed history record",
            extra={
                "collection_name": stored.collection_name,
                "collection_id": stored.collection_id,
                "version": stored.version,
                "previous_version": previous,
                "forced": capture.forced,
                "snapshot": stored.snapshot,
            },
        )
        return stored
