#!/usr/bin/env python3
"""
SQLite message store for pushall.

Append-only log of received messages. Uses Python's built-in sqlite3 with
asyncio.to_thread() so that store calls never block the event loop.
"""
import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Mapping

from .errors import StorageError
from .logging_setup import get_logger
from .models import DEFAULT_LEVEL, MESSAGE_FIELDS, SEARCH_FIELDS, Message, PushPayload

logger = get_logger(__name__)

SCHEMA_VERSION = 1

CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pusher TEXT,
    msg TEXT NOT NULL,
    type TEXT,
    level TEXT DEFAULT 'info',
    date TEXT,
    created_at INTEGER NOT NULL DEFAULT (strftime('%s','now'))
);

CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);
"""

_MSG_SELECT = ", ".join(MESSAGE_FIELDS)

# Backslash escapes LIKE wildcards so a keyword matches as a literal substring
_LIKE_ESCAPE = "\\"


def escape_like(keyword: str) -> str:
    """Escape LIKE wildcards in a user supplied keyword."""
    return (
        keyword.replace(_LIKE_ESCAPE, _LIKE_ESCAPE * 2)
        .replace("%", _LIKE_ESCAPE + "%")
        .replace("_", _LIKE_ESCAPE + "_")
    )


def build_keyword_filter(keyword: str | None) -> tuple[str | None, tuple]:
    """Return an OR-group over the searchable columns and its parameters.

    Blank keywords produce no condition. The keyword is only ever bound as a
    parameter, never interpolated into the SQL text.
    """
    if keyword is None or not keyword.strip():
        return None, ()

    pattern = f"%{escape_like(keyword)}%"
    group = " OR ".join(
        f"{column} LIKE ? ESCAPE '{_LIKE_ESCAPE}'" for column in SEARCH_FIELDS
    )
    return f"({group})", (pattern,) * len(SEARCH_FIELDS)


class SQLiteStorage:
    """
    Durable, append-only message log.

    ids come from AUTOINCREMENT and are strictly increasing; created_at is the
    insertion time in epoch seconds. Rows are never updated; clear() is the
    only destructive operation and also resets the id sequence.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False
        # Serializes writers so insert + read-back happen on one connection
        # without another append in between
        self._write_lock = asyncio.Lock()

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info("SQLite storage at %s", self.db_path)

    async def initialize(self) -> None:
        """Create the schema if needed."""
        if self._initialized:
            return

        def _init_db() -> None:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.executescript(CREATE_SCHEMA_SQL)

                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row[0] if row else 0
                if current_version < SCHEMA_VERSION:
                    conn.execute("DELETE FROM schema_version")
                    conn.execute(
                        "INSERT INTO schema_version (version) VALUES (?)",
                        (SCHEMA_VERSION,),
                    )
                    logger.info(
                        "Schema version v%d → v%d", current_version, SCHEMA_VERSION
                    )
                conn.commit()

        await asyncio.to_thread(_init_db)
        self._initialized = True
        logger.info("SQLite database initialized")

    async def _execute(
        self,
        query: str,
        params: tuple = (),
        fetch: bool = True,
    ) -> list[dict[str, Any]]:
        """Execute a query in thread pool."""

        def _run() -> list[dict[str, Any]]:
            with sqlite3.connect(self.db_path) as conn:
                conn.row_factory = sqlite3.Row
                cursor = conn.execute(query, params)
                if fetch:
                    return [dict(row) for row in cursor.fetchall()]
                conn.commit()
                return []

        return await asyncio.to_thread(_run)

    async def append(self, message: PushPayload | Mapping[str, Any]) -> Message:
        """Persist one message and return it with its assigned id and created_at.

        Raises:
            StorageError: msg is missing/empty or the row violates a constraint.
        """
        if isinstance(message, PushPayload):
            data = message.model_dump(mode="json")
        else:
            data = dict(message)

        msg = data.get("msg")
        if not isinstance(msg, str) or not msg:
            raise StorageError("Message text (msg) is required")

        level = data.get("level") or DEFAULT_LEVEL.value
        params = (data.get("pusher"), msg, data.get("type"), level, data.get("date"))

        def _insert() -> dict[str, Any]:
            with sqlite3.connect(self.db_path) as conn:
                conn.row_factory = sqlite3.Row
                cursor = conn.execute(
                    "INSERT INTO messages (pusher, msg, type, level, date)"
                    " VALUES (?, ?, ?, ?, ?)",
                    params,
                )
                row = conn.execute(
                    f"SELECT {_MSG_SELECT} FROM messages WHERE id = ?",
                    (cursor.lastrowid,),
                ).fetchone()
                conn.commit()
                return dict(row)

        async with self._write_lock:
            try:
                row = await asyncio.to_thread(_insert)
            except sqlite3.IntegrityError as e:
                raise StorageError(f"Message rejected by store: {e}") from e

        stored = Message.from_row(row)
        logger.debug("Stored message id=%d", stored.id)
        return stored

    async def query(
        self,
        limit: int,
        before_id: int | None = None,
        keyword: str | None = None,
    ) -> list[Message]:
        """Return up to `limit` messages, newest first.

        `before_id` is an exclusive keyset bound; `keyword` matches as a
        substring of any searchable column. Both filters are ANDed.
        """
        if limit <= 0:
            return []

        conditions: list[str] = []
        params: list[Any] = []

        if before_id is not None:
            conditions.append("id < ?")
            params.append(before_id)

        keyword_sql, keyword_params = build_keyword_filter(keyword)
        if keyword_sql:
            conditions.append(keyword_sql)
            params.extend(keyword_params)

        query = f"SELECT {_MSG_SELECT} FROM messages"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        rows = await self._execute(query, tuple(params))
        return [Message.from_row(row) for row in rows]

    async def count(self, keyword: str | None = None) -> int:
        """Count messages matching `keyword`, ignoring pagination."""
        query = "SELECT COUNT(*) AS count FROM messages"
        keyword_sql, params = build_keyword_filter(keyword)
        if keyword_sql:
            query += f" WHERE {keyword_sql}"

        result = await self._execute(query, params)
        return result[0]["count"] if result else 0

    async def clear(self) -> None:
        """Delete every message and restart ids at 1."""

        def _clear() -> int:
            with sqlite3.connect(self.db_path) as conn:
                deleted = conn.execute("DELETE FROM messages").rowcount
                conn.execute("DELETE FROM sqlite_sequence WHERE name = 'messages'")
                conn.commit()
                return deleted

        async with self._write_lock:
            deleted = await asyncio.to_thread(_clear)
        logger.info("Cleared %d messages", deleted)

    async def get_storage_size_mb(self) -> float:
        """Get current database file size in MB."""

        def _get_size() -> float:
            if self.db_path.exists():
                return self.db_path.stat().st_size / (1024 * 1024)
            return 0.0

        return await asyncio.to_thread(_get_size)

    async def close(self) -> None:
        """Mark the store closed; connections are opened per call."""
        self._initialized = False


async def create_sqlite_storage(db_path: str | Path) -> SQLiteStorage:
    """Create and initialize a SQLite storage instance."""
    storage = SQLiteStorage(db_path)
    await storage.initialize()
    return storage
