"""Signing-key lifecycle engine.

Pure, storage-agnostic functions:
  - create_signing_key()   — new record + one-time plaintext
  - deprecate_signing_key() — active → deprecated (overlap window starts)
  - destroy_signing_key()   — any → destroyed (idempotent)
  - evaluate_validity()     — validity, status, reason, remaining time at ``now``
  - key_status()            — active | deprecated | destroyed
  - needs_rotation()        — active and past TTL
  - rotate_signing_key()    — deprecate + create replacement

Every transition returns a new SigningKey; nothing here touches storage.
Callers persist the returned value (KeyStore.update / KeyStore.store).

Time-dependent functions accept ``now`` in epoch milliseconds. When omitted,
the wall clock is read once per call.

Concurrent rotate_signing_key() calls on the same key are not arbitrated here:
both succeed and produce two replacements. Callers needing exactly-once
rotation must serialise on key_id.
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Optional

from keyrotor.config import RotationConfig
from keyrotor.constants import (
    DEFAULT_CREATED_BY,
    ROTATION_CREATED_BY,
    VALID_CREATED_BY,
)
from keyrotor.errors import (
    AlreadyDeprecatedError,
    AlreadyDestroyedError,
    CannotRotateDestroyedError,
    InvalidArgumentError,
)
from keyrotor.lifecycle.keygen import (
    clamp_overlap,
    format_duration,
    generate_key,
    generate_key_id,
    hash_key,
    normalize_environment,
)
from keyrotor.lifecycle.models import (
    CreatedKey,
    KeyMetadata,
    KeyStatus,
    RotationPolicy,
    RotationResult,
    SigningKey,
    Validity,
)
from keyrotor.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_ROTATION_CONFIG = RotationConfig()

OVERLAP_ENDED_REASON = "Overlap period has ended"
DESTROYED_REASON = "Key has been destroyed"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# ─── Creation ─────────────────────────────────────────────────────────────────


def create_signing_key(
    *,
    prefix: Optional[str] = None,
    environment: Optional[str] = None,
    tenant_id: Optional[str] = None,
    created_by: str = DEFAULT_CREATED_BY,
    ttl_ms: Optional[int] = None,
    overlap_ms: Optional[int] = None,
    config: RotationConfig = DEFAULT_ROTATION_CONFIG,
    now: Optional[int] = None,
) -> CreatedKey:
    """Create a new active SigningKey.

    Unset options fall back to ``config``. overlap_ms is clamped to
    [5 minutes, 7 days].

    The returned plaintext is the only copy of the secret: it is not stored
    anywhere and cannot be recovered from the record.

    Raises:
        InvalidArgumentError: On an unknown prefix, environment or created_by,
            or a non-positive ttl_ms.
    """
    if created_by not in VALID_CREATED_BY:
        raise InvalidArgumentError(
            f"Invalid createdBy: {created_by}. Valid: {', '.join(VALID_CREATED_BY)}"
        )

    ttl = config.ttl_ms if ttl_ms is None else ttl_ms
    if not isinstance(ttl, int) or isinstance(ttl, bool) or ttl <= 0:
        raise InvalidArgumentError(f"ttlMs must be a positive integer, got {ttl!r}")
    overlap = config.overlap_ms if overlap_ms is None else overlap_ms

    env = normalize_environment(config.environment if environment is None else environment)
    plaintext = generate_key(config.prefix if prefix is None else prefix, env)
    created_at = now_ms() if now is None else now

    record = SigningKey(
        key_id=generate_key_id(),
        hash=hash_key(plaintext),
        created_at=created_at,
        expires_at=created_at + ttl,
        rotation_policy=RotationPolicy(ttl_ms=ttl, overlap_ms=clamp_overlap(overlap)),
        metadata=KeyMetadata(
            tenant_id=tenant_id,
            environment=env,
            created_by=created_by,
        ),
    )

    logger.debug(
        "Signing key created",
        key_id=record.key_id,
        tenant_id=tenant_id,
        environment=env,
        created_by=created_by,
    )
    return CreatedKey(record=record, plaintext=plaintext)


# ─── Transitions ──────────────────────────────────────────────────────────────


def deprecate_signing_key(record: SigningKey, now: Optional[int] = None) -> SigningKey:
    """Start the overlap window: set deprecated_at on an active key.

    Raises:
        AlreadyDestroyedError: If the key is destroyed.
        AlreadyDeprecatedError: If the key is already deprecated.
    """
    status = key_status(record)
    if status is KeyStatus.DESTROYED:
        raise AlreadyDestroyedError()
    if status is KeyStatus.DEPRECATED:
        raise AlreadyDeprecatedError()

    at = now_ms() if now is None else now
    return replace(record, deprecated_at=max(at, record.created_at))


def destroy_signing_key(record: SigningKey, now: Optional[int] = None) -> SigningKey:
    """Hard-invalidate a key. Idempotent.

    Keys destroyed straight from active get deprecated_at backfilled to the
    destruction time so that created_at <= deprecated_at <= destroyed_at.
    """
    if record.destroyed_at is not None:
        return record

    at = now_ms() if now is None else now
    deprecated_at = record.deprecated_at
    if deprecated_at is None:
        deprecated_at = max(at, record.created_at)
    return replace(
        record,
        deprecated_at=deprecated_at,
        destroyed_at=max(at, deprecated_at),
    )


# ─── Classification ───────────────────────────────────────────────────────────


def key_status(record: SigningKey) -> KeyStatus:
    """Classify a record. destroyed > deprecated > active."""
    if record.destroyed_at is not None:
        return KeyStatus.DESTROYED
    if record.deprecated_at is not None:
        return KeyStatus.DEPRECATED
    return KeyStatus.ACTIVE


def evaluate_validity(record: SigningKey, now: Optional[int] = None) -> Validity:
    """Decide whether ``record`` authenticates at ``now``.

    Decision order:
      1. destroyed  → invalid, remaining 0
      2. deprecated → valid while now < deprecated_at + overlap_ms
      3. active     → always valid; past expires_at it carries an advisory
                      "rotation recommended" reason and remaining None
    """
    at = now_ms() if now is None else now
    status = key_status(record)

    if status is KeyStatus.DESTROYED:
        return Validity(valid=False, status=status, reason=DESTROYED_REASON, remaining_ms=0)

    if status is KeyStatus.DEPRECATED:
        overlap_ends_at = record.deprecated_at + record.rotation_policy.overlap_ms
        if at >= overlap_ends_at:
            return Validity(
                valid=False, status=status, reason=OVERLAP_ENDED_REASON, remaining_ms=0
            )
        remaining = overlap_ends_at - at
        return Validity(
            valid=True,
            status=status,
            reason=f"Deprecated - {format_duration(remaining)} remaining in overlap",
            remaining_ms=remaining,
        )

    if at >= record.expires_at:
        overdue = at - record.expires_at
        return Validity(
            valid=True,
            status=status,
            reason=f"Key past TTL by {format_duration(overdue)} - rotation recommended",
            remaining_ms=None,
        )

    return Validity(valid=True, status=status, reason=None, remaining_ms=record.expires_at - at)


def needs_rotation(record: SigningKey, now: Optional[int] = None) -> bool:
    """True iff the key is active and at or past its TTL boundary."""
    if key_status(record) is not KeyStatus.ACTIVE:
        return False
    at = now_ms() if now is None else now
    return at >= record.expires_at


# ─── Rotation ─────────────────────────────────────────────────────────────────


def rotate_signing_key(
    record: SigningKey,
    *,
    environment: Optional[str] = None,
    tenant_id: Optional[str] = None,
    created_by: str = ROTATION_CREATED_BY,
    ttl_ms: Optional[int] = None,
    overlap_ms: Optional[int] = None,
    prefix: Optional[str] = None,
    config: RotationConfig = DEFAULT_ROTATION_CONFIG,
    now: Optional[int] = None,
) -> RotationResult:
    """Deprecate ``record`` (if still active) and create its replacement.

    The replacement inherits environment, tenant, ttl and overlap from
    ``record`` unless overridden. The prefix is not recorded on keys, so it
    comes from ``prefix`` or ``config.prefix``. An already-deprecated input is
    passed through unchanged as old_record.

    Raises:
        CannotRotateDestroyedError: If ``record`` is destroyed.
    """
    if key_status(record) is KeyStatus.DESTROYED:
        raise CannotRotateDestroyedError()

    at = now_ms() if now is None else now
    old_record = record
    if record.deprecated_at is None:
        old_record = deprecate_signing_key(record, now=at)

    created = create_signing_key(
        prefix=prefix,
        environment=environment or record.metadata.environment,
        tenant_id=tenant_id if tenant_id is not None else record.metadata.tenant_id,
        created_by=created_by,
        ttl_ms=ttl_ms or record.rotation_policy.ttl_ms,
        overlap_ms=overlap_ms or record.rotation_policy.overlap_ms,
        config=config,
        now=at,
    )

    logger.info(
        "Signing key rotated",
        old_key_id=old_record.key_id,
        new_key_id=created.record.key_id,
        tenant_id=created.record.tenant_id,
        created_by=created_by,
    )
    return RotationResult(
        old_record=old_record,
        new_record=created.record,
        plaintext=created.plaintext,
    )
