"""
SQLite-backed blob store.

Stores one row per key in a local database using aiosqlite. Used as the
default backend when no remote store is configured.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from chatchain.exceptions import BlobStoreError
from chatchain.logging import get_logger
from chatchain.storage.base import BlobStore
from chatchain.types import utc_now

logger = get_logger(__name__)


class SQLiteBlobStore(BlobStore):
    """Blob store persisted in a single SQLite table."""

    backend = "sqlite"

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._db = await aiosqlite.connect(self.db_path)
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS blobs (
                    key TEXT PRIMARY KEY,
                    data BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            await self._db.commit()
        except aiosqlite.Error as e:
            raise BlobStoreError(
                "Failed to open blob database",
                context={"backend": self.backend, "path": str(self.db_path), "error": str(e)},
            ) from e

        logger.info("SQLite blob store initialized", path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.init()
        if self._db is None:
            raise BlobStoreError(
                "Blob database is not open",
                context={"backend": self.backend, "path": str(self.db_path)},
            )
        return self._db

    async def get(self, key: str) -> bytes | None:
        db = await self._conn()
        try:
            async with db.execute("SELECT data FROM blobs WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise self._error("get", key, e) from e

        return bytes(row[0]) if row else None

    async def put(self, key: str, data: bytes) -> None:
        db = await self._conn()
        try:
            await db.execute(
                """
                INSERT INTO blobs (key, data, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
                """,
                (key, data, utc_now().isoformat()),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise self._error("put", key, e) from e

        logger.debug("Stored blob", key=key, size=len(data))

    async def delete(self, key: str) -> None:
        db = await self._conn()
        try:
            await db.execute("DELETE FROM blobs WHERE key = ?", (key,))
            await db.commit()
        except aiosqlite.Error as e:
            raise self._error("delete", key, e) from e

    async def keys(self) -> list[str]:
        """List stored keys."""
        db = await self._conn()
        async with db.execute("SELECT key FROM blobs ORDER BY key") as cursor:
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    def _error(self, operation: str, key: str, e: Exception) -> BlobStoreError:
        return BlobStoreError(
            f"SQLite {operation} failed",
            context={"backend": self.backend, "key": key, "operation": operation, "error": str(e)},
        )
