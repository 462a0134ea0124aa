"""
Structural diff engines.

The default engine produces RFC 6902 JSON Patch operation lists with
identity-aware array moves. Any object implementing DiffEngine can be
passed to HistoryTracker instead.
"""

from .engine import (
    IDENTITY_KEYS,
    INDEX_PREFIX,
    DiffEngine,
    JsonPatchDiffEngine,
    object_hash,
)

__all__ = [
    "DiffEngine",
    "JsonPatchDiffEngine",
    "object_hash",
    "IDENTITY_KEYS",
    "INDEX_PREFIX",
]
