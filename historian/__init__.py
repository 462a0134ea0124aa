"""
Historian - semantic-versioned document history.

This package records every state transition of a tracked entity as a
structural diff, stamps each transition with a semantic version, and
rebuilds any historical snapshot by replaying the diff chain.

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────┐
    │  Document   │────▶│   Snapshot   │────▶│    Commit    │
    │   Store     │hook │   Capture    │diff │    Policy    │
    └─────────────┘     └──────────────┘     └──────┬───────┘
                                                    │ version
                                                    ▼
                        ┌─────────────────────────────────────┐
                        │   History Store (memory / SQLite)   │
                        └─────────────────┬───────────────────┘
                                          │ ordered diffs
                                          ▼
                                   ┌──────────────┐
                                   │    Replay    │──▶ snapshots
                                   │    Engine    │
                                   └──────────────┘

Invariants:
    - History records are append-only and never mutated
    - Versions strictly increase along timestamp order per entity
    - Replaying the diff chain from {} reproduces every recorded state
    - Only snapshots are diffed, never live documents

How to change safely:
    - Keep the stored diff format stable; old records must still replay
    - New record fields must be optional and omitted when absent
    - Test replay against histories written by older versions
"""

from ._version import __version__
from .config import HistorianConfig, HistoryConfig
from .documents import DocumentStore, InMemoryDocumentStore
from .errors import (
    DiffError,
    HistorianError,
    HistoryStoreError,
    InvalidVersionError,
    NoHistoryError,
    VersionConflictError,
)
from .metadata import HistoryMetadata
from .replay import CompareResult, VersionResult
from .store import HistoryQuery, HistoryRecord, create_history_store
from .tracker import HistoryTracker, TrackedEntity

__all__ = [
    "__version__",
    "HistorianConfig",
    "HistoryConfig",
    "HistoryMetadata",
    "HistoryTracker",
    "TrackedEntity",
    "HistoryQuery",
    "HistoryRecord",
    "VersionResult",
    "CompareResult",
    "DocumentStore",
    "InMemoryDocumentStore",
    "create_history_store",
    "HistorianError",
    "NoHistoryError",
    "InvalidVersionError",
    "DiffError",
    "HistoryStoreError",
    "VersionConflictError",
]
