"""KeyStore — SigningKey persistence behind three lookup paths.

Index layout (must stay bit-for-bit stable for existing data):

    hash:{secretHash}             → SigningKey JSON (authentication lookup)
    key:{keyId}                   → SigningKey JSON (admin lookup)
    merchant:{tenantId|_global}:keys → JSON array of keyId strings

Consistency model:
  - The id-indexed record is canonical; the hash index and tenant list are
    derived from it.
  - Both direct indexes are always written with the same serialized bytes.
  - Every mutation is one unit of work: its checks, its tenant-list
    read-modify-write and its writes all happen inside it, so concurrent
    store()/update()/delete() calls never lose a tenant-list entry.
  - When the backend implements TransactionalStorage, that unit is a
    storage.transaction(): exclusive and all-or-nothing.
  - Otherwise KeyStore holds its own asyncio.Lock across the unit and issues
    writes in the order hash → id → tenant list. The lock serialises writers
    sharing this KeyStore only, and a crash between writes leaves a window in
    which the tenant list lags; listings tolerate ids whose record is gone.

Hash collisions: store() and update() refuse (ConflictError) to point the
hash index at a different keyId than the one already stored there.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

from keyrotor.constants import (
    GLOBAL_TENANT_ID,
    HASH_INDEX_PREFIX,
    KEY_ID_INDEX_PREFIX,
    TENANT_INDEX_PREFIX,
    TENANT_INDEX_SUFFIX,
)
from keyrotor.errors import ConflictError, InvalidArgumentError, StoreUnavailableError
from keyrotor.lifecycle.engine import evaluate_validity, key_status
from keyrotor.lifecycle.keygen import hash_key, is_valid_key_format
from keyrotor.lifecycle.models import KeyStatus, SigningKey
from keyrotor.store.protocol import (
    StorageBackend,
    StorageTransaction,
    TransactionalStorage,
)
from keyrotor.utils.logger import get_logger, short_hash

logger = get_logger(__name__)

_Source = Union[StorageBackend, StorageTransaction]


# ─── Index key builders ───────────────────────────────────────────────────────


def hash_index_key(secret_hash: str) -> str:
    return f"{HASH_INDEX_PREFIX}{secret_hash}"


def key_id_index_key(key_id: str) -> str:
    return f"{KEY_ID_INDEX_PREFIX}{key_id}"


def tenant_index_key(tenant_id: Optional[str]) -> str:
    return f"{TENANT_INDEX_PREFIX}{tenant_id or GLOBAL_TENANT_ID}{TENANT_INDEX_SUFFIX}"


# ─── AuthDecision ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AuthDecision:
    """Everything an authentication layer needs from one validate() call.

    found=False means no record matched the secret; valid is then False and
    the remaining fields are None.
    """

    valid: bool
    found: bool
    reason: Optional[str] = None
    key_id: Optional[str] = None
    status: Optional[KeyStatus] = None
    tenant_id: Optional[str] = None
    environment: Optional[str] = None
    is_deprecated: bool = False
    remaining_ms: Optional[int] = None


# ─── KeyStore ─────────────────────────────────────────────────────────────────


class KeyStore:
    """Persists SigningKeys and keeps the hash, id and tenant indexes in step.

    Every method raises StoreUnavailableError when constructed without a
    backend. Lookups for absent keys return None; delete() returns False.
    """

    def __init__(self, storage: Optional[StorageBackend]) -> None:
        self._storage = storage
        self._mutation_lock = asyncio.Lock()

    @property
    def storage(self) -> StorageBackend:
        if self._storage is None:
            raise StoreUnavailableError()
        return self._storage

    # ── Low-level helpers ─────────────────────────────────────────────────────

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[_Source]:
        """One mutation's unit of work; see the module docstring."""
        storage = self.storage
        if isinstance(storage, TransactionalStorage):
            async with storage.transaction() as txn:
                yield txn
        else:
            async with self._mutation_lock:
                yield storage

    @staticmethod
    async def _read_record(source: _Source, index_key: str) -> Optional[SigningKey]:
        raw = await source.get(index_key)
        if raw is None:
            return None
        return SigningKey.from_json(raw)

    @staticmethod
    async def _read_tenant_ids(source: _Source, tenant_id: Optional[str]) -> list[str]:
        raw = await source.get(tenant_index_key(tenant_id))
        if raw is None:
            return []
        try:
            ids = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as exc:
            raise InvalidArgumentError(f"Malformed tenant key list: {exc}") from exc
        if not isinstance(ids, list):
            raise InvalidArgumentError("Malformed tenant key list: not an array")
        return [str(i) for i in ids]

    @staticmethod
    def _encode_ids(ids: list[str]) -> bytes:
        return json.dumps(ids, separators=(",", ":")).encode("utf-8")

    def _ensure_available(self) -> None:
        if self._storage is None:
            raise StoreUnavailableError()

    @staticmethod
    def _require_identity(record: SigningKey) -> None:
        if not record.key_id or not record.hash:
            raise ConflictError("Invalid SigningKey: missing keyId or hash")

    @staticmethod
    def _refuse_collision(record: SigningKey, existing: Optional[SigningKey]) -> None:
        if existing is None or existing.key_id == record.key_id:
            return
        logger.warning(
            "Signing key hash collision refused",
            key_id=record.key_id,
            existing_key_id=existing.key_id,
            hash_prefix=short_hash(record.hash),
        )
        raise ConflictError(f"Secret hash already belongs to key {existing.key_id}")

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def store(self, record: SigningKey) -> None:
        """Persist a new record under all three indexes.

        Re-storing the same key_id is idempotent for the tenant list.

        Raises:
            ConflictError: If key_id or hash is missing, or the hash index
                already points at a different key_id.
            StoreUnavailableError: If no backend is configured.
        """
        self._ensure_available()
        self._require_identity(record)

        payload = record.to_json()
        async with self._transaction() as txn:
            self._refuse_collision(
                record, await self._read_record(txn, hash_index_key(record.hash))
            )
            await txn.put(hash_index_key(record.hash), payload)
            await txn.put(key_id_index_key(record.key_id), payload)

            tenant_ids = await self._read_tenant_ids(txn, record.tenant_id)
            if record.key_id not in tenant_ids:
                tenant_ids.append(record.key_id)
                await txn.put(tenant_index_key(record.tenant_id), self._encode_ids(tenant_ids))

        logger.info(
            "Signing key stored",
            key_id=record.key_id,
            tenant_id=record.tenant_id,
            status=key_status(record).value,
        )

    async def update(self, record: SigningKey) -> None:
        """Rewrite both direct indexes after a lifecycle transition.

        Never touches the tenant list: key_id and tenant_id do not change.

        Raises:
            ConflictError: If key_id or hash is missing, the stored record for
                key_id has a different secret hash, or the hash index already
                points at a different key_id.
            StoreUnavailableError: If no backend is configured.
        """
        self._ensure_available()
        self._require_identity(record)

        payload = record.to_json()
        async with self._transaction() as txn:
            current = await self._read_record(txn, key_id_index_key(record.key_id))
            if current is not None and current.hash != record.hash:
                raise ConflictError(f"Secret hash of key {record.key_id} is immutable")
            self._refuse_collision(
                record, await self._read_record(txn, hash_index_key(record.hash))
            )
            await txn.put(hash_index_key(record.hash), payload)
            await txn.put(key_id_index_key(record.key_id), payload)

        logger.info(
            "Signing key updated",
            key_id=record.key_id,
            tenant_id=record.tenant_id,
            status=key_status(record).value,
        )

    async def delete(self, key_id: str) -> bool:
        """Permanently remove a key from all three indexes.

        This is not revocation — destroy_signing_key() + update() keeps an
        audit trail; delete() erases it.

        Returns:
            True if the key existed and was removed, False otherwise.
        """
        self._ensure_available()
        if not key_id:
            return False

        async with self._transaction() as txn:
            record = await self._read_record(txn, key_id_index_key(key_id))
            if record is None:
                return False

            await txn.delete(hash_index_key(record.hash))
            await txn.delete(key_id_index_key(key_id))

            tenant_key = tenant_index_key(record.tenant_id)
            remaining = [
                i for i in await self._read_tenant_ids(txn, record.tenant_id) if i != key_id
            ]
            if remaining:
                await txn.put(tenant_key, self._encode_ids(remaining))
            else:
                await txn.delete(tenant_key)

        logger.info("Signing key deleted", key_id=key_id, tenant_id=record.tenant_id)
        return True

    # ── Lookups ───────────────────────────────────────────────────────────────

    async def lookup_by_secret(self, plaintext: str) -> Optional[SigningKey]:
        """Digest ``plaintext`` and look it up in the hash index."""
        self._ensure_available()
        if not plaintext or not isinstance(plaintext, str):
            return None
        return await self.lookup_by_hash(hash_key(plaintext))

    async def lookup_by_hash(self, secret_hash: str) -> Optional[SigningKey]:
        self._ensure_available()
        if not secret_hash:
            return None
        return await self._read_record(self.storage, hash_index_key(secret_hash))

    async def lookup_by_id(self, key_id: str) -> Optional[SigningKey]:
        self._ensure_available()
        if not key_id:
            return None
        return await self._read_record(self.storage, key_id_index_key(key_id))

    # ── Listings ──────────────────────────────────────────────────────────────

    async def list_tenant_ids(self, tenant_id: Optional[str]) -> list[str]:
        """Return the key ids recorded for ``tenant_id`` (None → global keys)."""
        return await self._read_tenant_ids(self.storage, tenant_id)

    async def list_tenant_records(self, tenant_id: Optional[str]) -> list[SigningKey]:
        """Return the tenant's records, skipping ids whose record is gone."""
        key_ids = await self.list_tenant_ids(tenant_id)
        records = await asyncio.gather(*(self.lookup_by_id(k) for k in key_ids))
        return [r for r in records if r is not None]

    async def list_all(self, status: Optional[KeyStatus] = None) -> list[SigningKey]:
        """Enumerate every stored key via the id index. Administrative use only."""
        records: list[SigningKey] = []
        for index_key in await self.storage.list(KEY_ID_INDEX_PREFIX):
            record = await self._read_record(self.storage, index_key)
            if record is None:
                continue
            if status is not None and key_status(record) is not KeyStatus(status):
                continue
            records.append(record)
        return records

    # ── Validation ────────────────────────────────────────────────────────────

    async def validate(self, plaintext: str, now: Optional[int] = None) -> AuthDecision:
        """Look up ``plaintext`` and evaluate the record's validity in one call.

        Malformed secrets are rejected without a storage round trip.
        """
        self._ensure_available()
        if not plaintext:
            return AuthDecision(valid=False, found=False, reason="No key provided")
        if not is_valid_key_format(plaintext):
            return AuthDecision(valid=False, found=False, reason="Malformed key")

        record = await self.lookup_by_secret(plaintext)
        if record is None:
            return AuthDecision(valid=False, found=False, reason="Key not found")

        validity = evaluate_validity(record, now)
        status = key_status(record)
        return AuthDecision(
            valid=validity.valid,
            found=True,
            reason=validity.reason,
            key_id=record.key_id,
            status=status,
            tenant_id=record.tenant_id,
            environment=record.metadata.environment or None,
            is_deprecated=record.deprecated_at is not None,
            remaining_ms=validity.remaining_ms,
        )
