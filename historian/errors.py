"""
Error types for Historian.

This module defines all exception types raised by the history engine:
- HistorianError: Base exception
- NoHistoryError: Replay requested for an entity with no records
- InvalidVersionError: Malformed version string or bump class
- DiffError: Diff computation or patch application failed
- HistoryStoreError: History store misuse or conditional append failure

Invariants:
    - All errors inherit from HistorianError
    - Errors include context for debugging
    - Backend errors (sqlite3.Error, ...) are never wrapped
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class HistorianError(Exception):
    """Base exception for all Historian errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "HISTORIAN_ERROR"
        self.details = details or {}


class NoHistoryError(HistorianError):
    """No history records exist for the entity.

    Raised when a version is requested for an entity that was never
    committed. Distinct from an out-of-range version, which is clamped.
    """

    def __init__(
        self,
        collection_name: str,
        collection_id: str,
    ) -> None:
        super().__init__(
            f"No history found for {collection_name}/{collection_id}",
            code="NO_HISTORY",
            details={"collection_name": collection_name, "collection_id": collection_id},
        )
        self.collection_name = collection_name
        self.collection_id = collection_id


class InvalidVersionError(HistorianError):
    """Version string or bump class could not be parsed."""

    def __init__(self, message: str, value: Any = None) -> None:
        super().__init__(message, code="INVALID_VERSION", details={"value": value})
        self.value = value


class DiffError(HistorianError):
    """Diff computation or patch application failed.

    Raised when:
    - A snapshot cannot be diffed
    - A stored diff does not apply to the replayed state
    """

    def __init__(self, message: str, version: Optional[str] = None) -> None:
        super().__init__(message, code="DIFF_ERROR", details={"version": version})
        self.version = version


class HistoryStoreError(HistorianError):
    """History store used incorrectly (e.g. before initialize())."""

    def __init__(self, message: str, code: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, code=code or "STORE_ERROR", details=details)


class VersionConflictError(HistoryStoreError):
    """Conditional append found a different latest version.

    Only raised when atomic appends are enabled. Another writer committed
    a record for the same entity between version lookup and append.
    """

    def __init__(
        self,
        collection_name: str,
        collection_id: str,
        expected: Optional[str],
        actual: Optional[str],
    ) -> None:
        super().__init__(
            f"Version conflict for {collection_name}/{collection_id}: "
            f"expected latest {expected!r}, found {actual!r}",
            code="VERSION_CONFLICT",
            collection_name=collection_name,
            collection_id=collection_id,
            expected=expected,
            actual=actual,
        )
        self.expected = expected
        self.actual = actual
