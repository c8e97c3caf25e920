"""SQLiteStorageBackend — aiosqlite-based async key-value backend.

Uses aiosqlite EXCLUSIVELY — no stdlib sqlite3 synchronous calls.

Features:
  - Single table ``kv(key TEXT PRIMARY KEY, value BLOB NOT NULL)``
  - WAL mode: PRAGMA journal_mode=WAL (concurrent reads while writing)
  - Schema version guard: PRAGMA user_version=1 — RuntimeError on mismatch
  - Long-lived connection: opened in initialize(), closed in close()
  - os.chmod(db_path, 0o600) on every initialize() — the file holds key digests
  - transaction(): asyncio.Lock + BEGIN IMMEDIATE, so units of work on the
    shared connection never interleave; put/delete/write_batch all use it
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import aiosqlite

from keyrotor.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Schema DDL ───────────────────────────────────────────────────────────────

_CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    key     TEXT PRIMARY KEY,
    value   BLOB NOT NULL
);
"""

_SCHEMA_VERSION = 1

_MEMORY_PATH = ":memory:"

_UPSERT_SQL = (
    "INSERT INTO kv (key, value) VALUES (?, ?) "
    "ON CONFLICT(key) DO UPDATE SET value = excluded.value"
)


async def _select_value(db: aiosqlite.Connection, key: str) -> Optional[bytes]:
    cursor = await db.execute("SELECT value FROM kv WHERE key = ?", (key,))
    row = await cursor.fetchone()
    if row is None:
        return None
    value = row[0]
    return value.encode("utf-8") if isinstance(value, str) else bytes(value)


class _SQLiteTransaction:
    """Statements issued inside an open BEGIN IMMEDIATE; commit is the caller's."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def get(self, key: str) -> Optional[bytes]:
        return await _select_value(self._db, key)

    async def put(self, key: str, value: bytes) -> None:
        await self._db.execute(_UPSERT_SQL, (key, bytes(value)))

    async def delete(self, key: str) -> None:
        await self._db.execute("DELETE FROM kv WHERE key = ?", (key,))


class SQLiteStorageBackend:
    """Async SQLite StorageBackend + TransactionalStorage.

    Usage:
        backend = SQLiteStorageBackend("~/.keyrotor/keys.db")
        await backend.initialize()   # raises RuntimeError on schema version mismatch
        store = KeyStore(backend)
        ...
        await backend.close()
    """

    def __init__(self, db_path: str = "~/.keyrotor/keys.db") -> None:
        self._db_path: str = (
            db_path if db_path == _MEMORY_PATH else os.path.expanduser(db_path)
        )
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the connection, enable WAL mode, and create/verify the schema.

        Raises:
            RuntimeError: If PRAGMA user_version is neither 0 nor 1.
        """
        on_disk = self._db_path != _MEMORY_PATH
        if on_disk:
            parent_dir = os.path.dirname(self._db_path)
            if parent_dir:
                os.makedirs(parent_dir, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)

        await self._db.execute("PRAGMA journal_mode=WAL;")

        cursor = await self._db.execute("PRAGMA user_version;")
        row = await cursor.fetchone()
        current_version: int = row[0] if row else 0

        if current_version == 0:
            await self._db.executescript(_CREATE_SCHEMA_SQL)
            await self._db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")
            await self._db.commit()
            logger.info(
                "key_db_schema_created",
                db_path=self._db_path,
                schema_version=_SCHEMA_VERSION,
            )
        elif current_version == _SCHEMA_VERSION:
            logger.info(
                "key_db_schema_ok",
                db_path=self._db_path,
                schema_version=current_version,
            )
        else:
            await self._db.close()
            self._db = None
            raise RuntimeError(
                f"Unsupported key database schema version: {current_version}. "
                f"Expected {_SCHEMA_VERSION}; restore a compatible backup or point "
                "KEYROTOR_STORE_PATH at a new file."
            )

        if on_disk:
            os.chmod(self._db_path, 0o600)

    async def close(self) -> None:
        """Close the aiosqlite connection gracefully."""
        if self._db is not None:
            async with self._lock:
                await self._db.close()
                self._db = None
            logger.debug("key_db_closed", db_path=self._db_path)

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not initialized — call initialize() first")
        return self._db

    # ── TransactionalStorage ──────────────────────────────────────────────────

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_SQLiteTransaction]:
        """Exclusive transaction: asyncio.Lock in-process, BEGIN IMMEDIATE on disk.

        BEGIN IMMEDIATE takes SQLite's write lock up front, so writers in other
        processes on the same file are serialised as well.
        """
        db = self._conn()
        async with self._lock:
            await db.execute("BEGIN IMMEDIATE;")
            try:
                yield _SQLiteTransaction(db)
            except BaseException:
                await db.rollback()
                raise
            await db.commit()

    async def write_batch(self, puts: dict[str, bytes], deletes: list[str]) -> None:
        """Apply puts and deletes in a single transaction; roll back on any failure."""
        async with self.transaction() as txn:
            for key, value in puts.items():
                await txn.put(key, value)
            for key in deletes:
                await txn.delete(key)

    # ── StorageBackend Protocol Methods ───────────────────────────────────────

    async def get(self, key: str) -> Optional[bytes]:
        db = self._conn()
        async with self._lock:
            return await _select_value(db, key)

    async def put(self, key: str, value: bytes) -> None:
        async with self.transaction() as txn:
            await txn.put(key, value)

    async def delete(self, key: str) -> None:
        async with self.transaction() as txn:
            await txn.delete(key)

    async def list(self, prefix: str) -> list[str]:
        db = self._conn()
        async with self._lock:
            cursor = await db.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]
