"""keyrotor key store package.

Re-exports the public API for ergonomic imports:

    from keyrotor.store import KeyStore, MemoryStorageBackend

Layout:
    protocol.py        — StorageBackend + TransactionalStorage Protocols
    memory_backend.py  — MemoryStorageBackend (dict, asyncio.Lock batches)
    sqlite_backend.py  — SQLiteStorageBackend (aiosqlite, WAL, version guard)
    factory.py         — create_storage_backend() — backend selection by config
    keystore.py        — KeyStore (hash / id / tenant indexes) + AuthDecision
"""

from keyrotor.store.factory import create_storage_backend
from keyrotor.store.keystore import (
    AuthDecision,
    KeyStore,
    hash_index_key,
    key_id_index_key,
    tenant_index_key,
)
from keyrotor.store.memory_backend import MemoryStorageBackend
from keyrotor.store.protocol import StorageBackend, TransactionalStorage
from keyrotor.store.sqlite_backend import SQLiteStorageBackend

__all__ = [
    # Protocols
    "StorageBackend",
    "TransactionalStorage",
    # Backends
    "MemoryStorageBackend",
    "SQLiteStorageBackend",
    "create_storage_backend",
    # Store
    "KeyStore",
    "AuthDecision",
    "hash_index_key",
    "key_id_index_key",
    "tenant_index_key",
]
