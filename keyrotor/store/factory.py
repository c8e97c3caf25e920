"""Storage backend factory — backend selection and initialization.

Backend selection (Config.store.backend):
  - "sqlite" → SQLiteStorageBackend at Config.store.path
               (KEYROTOR_STORE_PATH overrides, applied by load_config())
  - "memory" → MemoryStorageBackend (default)

SQLiteStorageBackend.initialize() raises RuntimeError on an incompatible
PRAGMA user_version; it is propagated so the caller refuses to start.
"""

from __future__ import annotations

from keyrotor.config import Config
from keyrotor.store.protocol import StorageBackend
from keyrotor.utils.logger import get_logger

logger = get_logger(__name__)


async def create_storage_backend(config: Config) -> StorageBackend:
    """Create and initialize the configured storage backend.

    Raises:
        RuntimeError: If the SQLite schema version is incompatible.
        ValueError: If config.store.backend is unknown.
    """
    backend = config.store.backend
    if backend == "sqlite":
        return await _create_sqlite_backend(config.store.path)
    if backend == "memory":
        return _create_memory_backend()
    raise ValueError(f"Unknown storage backend: {backend!r}")


def _create_memory_backend() -> StorageBackend:
    from keyrotor.store.memory_backend import MemoryStorageBackend

    logger.info("storage_backend_selected", backend="MemoryStorageBackend")
    return MemoryStorageBackend()


async def _create_sqlite_backend(db_path: str) -> StorageBackend:
    from keyrotor.store.sqlite_backend import SQLiteStorageBackend

    backend = SQLiteStorageBackend(db_path=db_path)
    await backend.initialize()
    logger.info(
        "storage_backend_selected",
        backend="SQLiteStorageBackend",
        db_path=backend.db_path,
    )
    return backend
