"""StorageBackend Protocol — the abstract key-value interface behind KeyStore.

Implementations: MemoryStorageBackend (default), SQLiteStorageBackend.
Selection via create_storage_backend() factory (store/factory.py).

Backends that can run several reads and writes as one atomic unit also
implement TransactionalStorage. KeyStore detects this with isinstance() and
performs every mutation, including the tenant-list read-modify-write, inside
a single transaction() so its three indexes change together.

Transient storage errors are NOT caught by KeyStore — they propagate to the
caller, which owns retry/backoff policy.
"""

from __future__ import annotations

from typing import AsyncContextManager, Optional, Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """Minimal async key-value interface.

    list() is for administrative enumeration only, never the auth hot path.
    """

    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored value, or None if absent."""
        ...

    async def put(self, key: str, value: bytes) -> None:
        """Create or overwrite ``key``."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key``. Deleting an absent key is a no-op."""
        ...

    async def list(self, prefix: str) -> list[str]:
        """Return every stored key starting with ``prefix``, sorted."""
        ...

    async def close(self) -> None:
        """Release connections and resources."""
        ...


class StorageTransaction(Protocol):
    """Reads and writes scoped to one open transaction.

    get() sees the transaction's own pending writes.
    """

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def put(self, key: str, value: bytes) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


@runtime_checkable
class TransactionalStorage(Protocol):
    """Optional capability: isolated, all-or-nothing units of work."""

    def transaction(self) -> AsyncContextManager[StorageTransaction]:
        """Open an exclusive transaction.

        Transactions on one backend never interleave. Leaving the block
        normally commits; leaving it with an exception discards every write
        made through the transaction.
        """
        ...

    async def write_batch(self, puts: dict[str, bytes], deletes: list[str]) -> None:
        """Apply all ``puts`` and ``deletes`` in one transaction().

        Either every change is visible afterwards or none is.
        """
        ...
