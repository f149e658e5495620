"""SQLite key-value store for cache records.

All store operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as a cache miss by the
engine), write failures are logged and ignored (the fetched body is still
served). Infrastructure errors never cross the store boundary.
"""

from __future__ import annotations

import json
from typing import Any

import aiosqlite
import structlog

log = structlog.get_logger()

_CREATE_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL
)
"""


class SQLiteStore:
    """aiosqlite-backed key-value store implementing StoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_KV_TABLE)
        await self._db.commit()

    async def get(self, key: str) -> dict[str, Any] | None:
        """Read a record. Returns ``None`` on miss, read failure or corrupt JSON."""
        try:
            cursor = await self._db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("store_read_error", key=key, exc_info=True)
            return None

        if row is None:
            return None

        try:
            value = json.loads(row[0])
        except json.JSONDecodeError:
            log.warning("store_decode_error", key=key)
            return None
        if not isinstance(value, dict):
            log.warning("store_decode_error", key=key, reason="not_an_object")
            return None
        return value

    async def put(self, key: str, value: dict[str, Any]) -> None:
        """Overwrite the record at *key*. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO kv_store (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=key, exc_info=True)
