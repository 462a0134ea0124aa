"""
Replay engine: fold diff chains back into point-in-time snapshots.

No full snapshots are stored, so every read replays from the empty state.
Storage stays compact and reads cost one patch per record.

Invariants:
    - Folding starts from {} and applies records in the order given
    - Records flagged snapshot=True replace the state instead of patching
    - Each returned VersionResult owns an independent copy of its state
    - Out-of-range target versions are clamped; only a missing history
      is an error

How to change safely:
    - Keep version comparisons on semver precedence (versioning module)
    - Never cache replayed states here; the store owns the history
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .diff import DiffEngine
from .errors import DiffError, NoHistoryError
from .store import HistoryRecord
from .versioning import compare_versions, parse_version, version_key

logger = logging.getLogger(__name__)


@dataclass
class VersionResult:
    """A history record view carrying the materialized state.

    ``object`` holds the snapshot at this version. When the snapshot was
    not requested, ``object`` is None and ``diff`` holds the raw diff.
    """

    version: Optional[str]
    object: Optional[Dict[str, Any]] = None
    diff: Any = None
    record_id: Optional[str] = None
    collection_name: Optional[str] = None
    collection_id: Optional[str] = None
    timestamp: Optional[int] = None
    event: Optional[str] = None
    reason: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    user: Any = None
    account: Any = None
    method: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        record: HistoryRecord,
        state: Optional[Dict[str, Any]] = None,
        include_diff: bool = False,
    ) -> VersionResult:
        return cls(
            version=record.version,
            object=state,
            diff=copy.deepcopy(record.diff) if include_diff else None,
            record_id=record.record_id,
            collection_name=record.collection_name,
            collection_id=record.collection_id,
            timestamp=record.timestamp,
            event=record.event,
            reason=record.reason,
            data=record.data,
            user=record.user,
            account=record.account,
            method=record.method,
        )

    def to_dict(self, field_names: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Convert to dictionary, omitting absent fields."""
        names = field_names or {}
        return {
            names.get(f.name, f.name): getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass
class CompareResult:
    """Diff between two replayed versions.

    Attributes:
        diff: Diff turning ``left`` into ``right``
        left: Snapshot at the first requested version
        right: Snapshot at the second requested version
    """

    diff: Any
    left: Dict[str, Any]
    right: Dict[str, Any]


class ReplayEngine:
    """Folds ordered history records into snapshots.

    Example:
        >>> replay = ReplayEngine(JsonPatchDiffEngine())
        >>> results = replay.replay_all(records)
        >>> results[-1].object
        {'_id': 't1', 'size': 'large'}
    """

    def __init__(self, engine: DiffEngine) -> None:
        self.engine = engine

    def fold(self, state: Dict[str, Any], record: HistoryRecord) -> Dict[str, Any]:
        """Apply one record to ``state``.

        Raises:
            DiffError: If the record's diff does not apply
        """
        if record.snapshot:
            return copy.deepcopy(record.diff) if record.diff else {}
        try:
            return self.engine.patch(state, record.diff)
        except DiffError as e:
            raise DiffError(
                f"Cannot replay version {record.version}: {e.message}",
                version=record.version,
            ) from e

    def replay_all(self, records: Sequence[HistoryRecord]) -> List[VersionResult]:
        """Materialize every record in the order given.

        Args:
            records: Records of one entity, oldest first

        Returns:
            One VersionResult per record, each with its own snapshot
        """
        state: Dict[str, Any] = {}
        results = []
        for record in records:
            state = self.fold(state, record)
            results.append(VersionResult.from_record(record, copy.deepcopy(state)))
        return results

    def latest(self, records: Sequence[HistoryRecord]) -> Dict[str, Any]:
        """Snapshot after folding every record."""
        state: Dict[str, Any] = {}
        for record in records:
            state = self.fold(state, record)
        return state

    def clamp(self, records: Sequence[HistoryRecord], target: str) -> str:
        """Clamp ``target`` into the recorded version range.

        Raises:
            InvalidVersionError: If ``target`` is malformed
        """
        parse_version(target)
        versions = [record.version for record in records]
        earliest = min(versions, key=version_key)
        latest = max(versions, key=version_key)
        if compare_versions(target, latest) > 0:
            return latest
        if compare_versions(target, earliest) < 0:
            return earliest
        return target

    def replay_to(
        self,
        records: Sequence[HistoryRecord],
        target: str,
        *,
        collection_name: str,
        collection_id: str,
        include_snapshot: bool = True,
    ) -> VersionResult:
        """Materialize the entity at ``target``.

        Records are folded oldest first up to and including the clamped
        target. The envelope is the record carrying the clamped version;
        if no record carries exactly that version, the newest record
        before it.

        Args:
            records: Records of one entity, in any order
            target: Requested version
            collection_name: Entity collection (for errors)
            collection_id: Entity id (for errors)
            include_snapshot: Fold and attach the snapshot; when False the
                envelope carries its raw diff instead

        Returns:
            VersionResult at the clamped version

        Raises:
            NoHistoryError: If there are no records
            InvalidVersionError: If ``target`` is malformed
        """
        if not records:
            raise NoHistoryError(collection_name, collection_id)

        ordered = sorted(records, key=lambda r: r.timestamp or 0)
        clamped = self.clamp(ordered, target)
        if clamped != target:
            logger.debug(
                "Clamped requested version",
                extra={
                    "collection_name": collection_name,
                    "collection_id": collection_id,
                    "requested": target,
                    "version": clamped,
                },
            )

        state: Dict[str, Any] = {}
        envelope: Optional[HistoryRecord] = None
        for record in ordered:
            if compare_versions(record.version, clamped) > 0:
                continue
            if include_snapshot:
                state = self.fold(state, record)
            if envelope is None or compare_versions(record.version, envelope.version) >= 0:
                envelope = record

        # clamp() guarantees at least the earliest record qualifies
        assert envelope is not None

        if not include_snapshot:
            return VersionResult.from_record(envelope, include_diff=True)
        return VersionResult.from_record(envelope, state)

    def compare(
        self,
        records: Sequence[HistoryRecord],
        version_left: str,
        version_right: str,
        *,
        collection_name: str,
        collection_id: str,
    ) -> CompareResult:
        """Diff the snapshots at two versions, in either order."""
        left = self.replay_to(
            records,
            version_left,
            collection_name=collection_name,
            collection_id=collection_id,
        ).object or {}
        right = self.replay_to(
            records,
            version_right,
            collection_name=collection_name,
            collection_id=collection_id,
        ).object or {}
        return CompareResult(diff=self.engine.diff(left, right), left=left, right=right)
