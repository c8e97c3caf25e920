"""Root test configuration for keyrotor.

Clears every KEYROTOR_* environment variable so that a developer's shell
(or a ~/.keyrotor/config.yaml pointed at by KEYROTOR_CONFIG) never leaks into
the suite. Tests that exercise env overrides set them via monkeypatch.
"""

from __future__ import annotations

import os

import pytest

from keyrotor.store.keystore import KeyStore
from keyrotor.store.memory_backend import MemoryStorageBackend

# Fixed clock for deterministic lifecycle tests (2024-01-01T00:00:00Z).
T0 = 1_704_067_200_000


@pytest.fixture(autouse=True)
def clean_keyrotor_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove KEYROTOR_* variables inherited from the calling environment."""
    for name in list(os.environ):
        if name.startswith("KEYROTOR_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def memory_storage() -> MemoryStorageBackend:
    return MemoryStorageBackend()


@pytest.fixture
def key_store(memory_storage: MemoryStorageBackend) -> KeyStore:
    return KeyStore(memory_storage)


@pytest.fixture
def t0() -> int:
    return T0
