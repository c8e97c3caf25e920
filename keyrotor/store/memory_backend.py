"""MemoryStorageBackend — in-process dict storage.

Used by tests and for ephemeral deployments where keys need not survive a
restart. Writes go through transaction(): an asyncio.Lock makes transactions
exclusive, and writes are staged and applied to the dict only on commit, so
readers never observe a half-applied or abandoned unit of work.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from keyrotor.utils.logger import get_logger

logger = get_logger(__name__)

_DELETED = object()


class _MemoryTransaction:
    def __init__(self, data: dict[str, bytes]) -> None:
        self._data = data
        self._pending: dict[str, object] = {}

    async def get(self, key: str) -> Optional[bytes]:
        if key in self._pending:
            value = self._pending[key]
            return None if value is _DELETED else value  # type: ignore[return-value]
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        self._pending[key] = bytes(value)

    async def delete(self, key: str) -> None:
        self._pending[key] = _DELETED

    def commit(self) -> None:
        for key, value in self._pending.items():
            if value is _DELETED:
                self._data.pop(key, None)
            else:
                self._data[key] = value  # type: ignore[assignment]


class MemoryStorageBackend:
    """Dict-backed StorageBackend + TransactionalStorage."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_MemoryTransaction]:
        async with self._lock:
            txn = _MemoryTransaction(self._data)
            yield txn
            txn.commit()

    async def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    async def put(self, key: str, value: bytes) -> None:
        async with self.transaction() as txn:
            await txn.put(key, value)

    async def delete(self, key: str) -> None:
        async with self.transaction() as txn:
            await txn.delete(key)

    async def list(self, prefix: str) -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    async def write_batch(self, puts: dict[str, bytes], deletes: list[str]) -> None:
        async with self.transaction() as txn:
            for key, value in puts.items():
                await txn.put(key, value)
            for key in deletes:
                await txn.delete(key)

    async def close(self) -> None:
        logger.debug("MemoryStorageBackend closed", entries=len(self._data))

    def __len__(self) -> int:
        return len(self._data)
