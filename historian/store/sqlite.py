"""
SQLite history store for Historian.

This module stores history records in a single SQLite table, one row per
record, partitioned logically by (collection_name, collection_id).

Invariants:
    - Rows are only ever inserted, never updated or deleted
    - seq (INTEGER PRIMARY KEY) records insertion order and breaks
      timestamp ties
    - Version components are stored as integers so ordering by version
      uses semver precedence, not string order
    - Conditional appends run inside BEGIN IMMEDIATE

How to change safely:
    - Schema migrations must be backward compatible
    - JSON columns are written with sorted keys; keep it that way or
      equality filters on them stop matching old rows

Table schema:
    <table>:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT
        - record_id TEXT UNIQUE
        - collection_name TEXT
        - collection_id TEXT
        - diff_json TEXT
        - version TEXT
        - version_major/minor/patch INTEGER
        - timestamp INTEGER (Unix ms)
        - event TEXT, reason TEXT, method TEXT
        - data_json TEXT, user_json TEXT, account_json TEXT
        - snapshot INTEGER (0/1)
        - INDEX (collection_name, collection_id, timestamp DESC)
        - INDEX (collection_name, collection_id, version_major, version_minor, version_patch)
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional

from ..errors import HistoryStoreError, VersionConflictError
from ..versioning import parse_version
from .base import UNCHECKED, HistoryQuery, HistoryRecord

logger = logging.getLogger(__name__)

# Record attribute -> (column, is_json)
_COLUMNS = {
    "record_id": ("record_id", False),
    "collection_name": ("collection_name", False),
    "collection_id": ("collection_id", False),
    "diff": ("diff_json", True),
    "version": ("version", False),
    "timestamp": ("timestamp", False),
    "event": ("event", False),
    "reason": ("reason", False),
    "data": ("data_json", True),
    "user": ("user_json", True),
    "account": ("account_json", True),
    "method": ("method", False),
    "snapshot": ("snapshot", False),
}


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, sort_keys=True)


def _loads(text: Optional[str]) -> Any:
    if text is None:
        return None
    return json.loads(text)


class SqliteHistoryStore:
    """SQLite-backed HistoryStore.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqliteHistoryStore("/var/lib/historian")
        >>> await store.initialize()
        >>> await store.latest_version("tank", "t1") is None
        True
    """

    def __init__(
        self,
        data_dir: str,
        db_name: str = "history.db",
        table: str = "__histories",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the history store.

        Args:
            data_dir: Directory for the SQLite database file
            db_name: Database file name
            table: History table name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_name = db_name
        # Sanitize table name; it is interpolated into SQL
        self.table = "".join(c for c in table if c.isalnum() or c == "_")
        if not self.table:
            raise ValueError(f"Invalid history table name: {table!r}")
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the history database.

        Raises:
            HistoryStoreError: If initialize() has not been called
        """
        if not self._initialized:
            raise HistoryStoreError("History store not initialized", code="NOT_INITIALIZED")
        with self._connect() as conn:
            yield conn

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        self.data_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create the history table and its indexes."""
        t = self.table
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS "{t}" (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                record_id TEXT NOT NULL UNIQUE,
                collection_name TEXT NOT NULL,
                collection_id TEXT NOT NULL,
                diff_json TEXT NOT NULL,
                version TEXT NOT NULL,
                version_major INTEGER NOT NULL,
                version_minor INTEGER NOT NULL,
                version_patch INTEGER NOT NULL,
                timestamp INTEGER NOT NULL,
                event TEXT,
                reason TEXT,
                data_json TEXT,
                user_json TEXT,
                account_json TEXT,
                method TEXT,
                snapshot INTEGER NOT NULL DEFAULT 0
            );

            CREATE INDEX IF NOT EXISTS "idx_{t}_entity_timestamp"
                ON "{t}"(collection_name, collection_id, timestamp DESC);

            CREATE INDEX IF NOT EXISTS "idx_{t}_entity_version"
                ON "{t}"(collection_name, collection_id,
                         version_major, version_minor, version_patch);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        with self._connect() as conn:
            self._create_schema(conn)
        self._initialized = True
        logger.info(f"Initialized history database: {self.db_path}")

    async def close(self) -> None:
        """Mark the store closed; connections are per-operation."""
        self._initialized = False

    async def insert(
        self,
        record: HistoryRecord,
        *,
        expected_previous: Any = UNCHECKED,
    ) -> HistoryRecord:
        """Append a record, optionally only if the latest version matches."""
        if record.collection_name is None or record.collection_id is None:
            raise HistoryStoreError("History record requires collection_name and collection_id")

        parsed = parse_version(record.version)
        stored = record.stamped(
            record_id=uuid.uuid4().hex,
            timestamp=int(time.time() * 1000),
        )

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                if expected_previous is not UNCHECKED:
                    actual = self._latest_version(
                        conn, stored.collection_name, stored.collection_id
                    )
                    if actual != expected_previous:
                        raise VersionConflictError(
                            stored.collection_name,
                            stored.collection_id,
                            expected_previous,
                            actual,
                        )

                conn.execute(
                    f"""
                    INSERT INTO "{self.table}" (
                        record_id, collection_name, collection_id, diff_json,
                        version, version_major, version_minor, version_patch,
                        timestamp, event, reason, data_json, user_json,
                        account_json, method, snapshot
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        stored.record_id,
                        stored.collection_name,
                        stored.collection_id,
                        json.dumps(stored.diff, sort_keys=True),
                        stored.version,
                        parsed.major,
                        parsed.minor,
                        parsed.patch,
                        stored.timestamp,
                        stored.event,
                        stored.reason,
                        _dumps(stored.data),
                        _dumps(stored.user),
                        _dumps(stored.account),
                        stored.method,
                        1 if stored.snapshot else 0,
                    ),
                )

                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Inserted history record",
            extra={
                "collection_name": stored.collection_name,
                "collection_id": stored.collection_id,
                "version": stored.version,
            },
        )

        return stored

    async def find(self, query: HistoryQuery) -> List[HistoryRecord]:
        """Return matching records in query order."""
        query = query.normalized()

        sql = f'SELECT * FROM "{self.table}"'
        clauses = []
        params: list[Any] = []
        for name, value in query.find.items():
            column, is_json = _COLUMNS[name]
            if value is None:
                clauses.append(f"{column} IS NULL")
                continue
            clauses.append(f"{column} = ?")
            if is_json:
                params.append(json.dumps(value, sort_keys=True))
            elif name == "snapshot":
                params.append(1 if value else 0)
            else:
                params.append(value)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)

        direction = "DESC" if query.descending else "ASC"
        if query.sort_field == "version":
            order = ("version_major", "version_minor", "version_patch", "seq")
        else:
            order = ("timestamp", "seq")
        sql += " ORDER BY " + ", ".join(f"{column} {direction}" for column in order)

        if query.limit or query.skip:
            sql += " LIMIT ? OFFSET ?"
            params.extend([query.limit if query.limit else -1, query.skip])

        with self._get_connection() as conn:
            cursor = conn.execute(sql, params)
            records = [self._row_to_record(row) for row in cursor.fetchall()]

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
        with self._get_connection() as conn:
            return self._latest_version(conn, collection_name, collection_id)

    def _latest_version(
        self,
        conn: sqlite3.Connection,
        collection_name: str,
        collection_id: str,
    ) -> Optional[str]:
        cursor = conn.execute(
            f"""
            SELECT version FROM "{self.table}"
            WHERE collection_name = ? AND collection_id = ?
            ORDER BY timestamp DESC, seq DESC
            LIMIT 1
            """,
            (collection_name, collection_id),
        )
        row = cursor.fetchone()
        return row[0] if row else None

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> HistoryRecord:
        return HistoryRecord(
            record_id=row["record_id"],
            collection_name=row["collection_name"],
            collection_id=row["collection_id"],
            diff=json.loads(row["diff_json"]),
            version=row["version"],
            timestamp=row["timestamp"],
            event=row["event"],
            reason=row["reason"],
            data=_loads(row["data_json"]),
            user=_loads(row["user_json"]),
            account=_loads(row["account_json"]),
            method=row["method"],
            snapshot=bool(row["snapshot"]),
        )

    async def get_stats(self) -> dict[str, int]:
        """Record and entity counts."""
        with self._get_connection() as conn:
            stats = {}

            cursor = conn.execute(f'SELECT COUNT(*) FROM "{self.table}"')
            stats["records"] = cursor.fetchone()[0]

            cursor = conn.execute(
                f"""
                SELECT COUNT(*) FROM (
                    SELECT DISTINCT collection_name, collection_id FROM "{self.table}"
                )
                """
            )
            stats["entities"] = cursor.fetchone()[0]

            return stats
