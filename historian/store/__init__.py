"""
History record store abstraction for Historian.

This module provides a pluggable history store interface supporting:
- SQLite (durable, single file)
- In-memory (for testing and local development)

Invariants:
    - insert() returns only after the record is stored
    - Records of one entity are totally ordered by (timestamp, insertion)
    - Stored records are never modified

How to change safely:
    - New backends must implement the HistoryStore protocol
    - Run the shared store tests against every backend
"""

from .base import (
    IDENTITY_FIELDS,
    UNCHECKED,
    HistoryQuery,
    HistoryRecord,
    HistoryStore,
    create_history_store,
)
from .memory import InMemoryHistoryStore
from .sqlite import SqliteHistoryStore

__all__ = [
    # Protocol and types
    "HistoryStore",
    "HistoryRecord",
    "HistoryQuery",
    "IDENTITY_FIELDS",
    "UNCHECKED",
    # Factory
    "create_history_store",
    # Implementations
    "InMemoryHistoryStore",
    "SqliteHistoryStore",
]
