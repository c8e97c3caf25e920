"""Unit tests for keyrotor/lifecycle/engine.py.

Verifies:
  - create_signing_key(): defaults from RotationConfig, overlap clamping,
    argument validation, plaintext never stored on the record
  - deprecate/destroy transitions and their preconditions
  - destroy() idempotence and timestamp ordering
  - evaluate_validity() across active / past-TTL / deprecated / destroyed
  - the overlap boundary: valid strictly before deprecated_at + overlap_ms
  - rotate_signing_key(): old deprecated, new active, inheritance, overrides
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from keyrotor.config import RotationConfig
from keyrotor.constants import DAY_MS, HOUR_MS, MAX_OVERLAP_MS, MIN_OVERLAP_MS, MINUTE_MS
from keyrotor.errors import (
    AlreadyDeprecatedError,
    AlreadyDestroyedError,
    CannotRotateDestroyedError,
    InvalidArgumentError,
)
from keyrotor.lifecycle.engine import (
    DESTROYED_REASON,
    OVERLAP_ENDED_REASON,
    create_signing_key,
    deprecate_signing_key,
    destroy_signing_key,
    evaluate_validity,
    key_status,
    needs_rotation,
    rotate_signing_key,
)
from keyrotor.lifecycle.keygen import hash_key
from keyrotor.lifecycle.models import KeyStatus


# ─── create_signing_key ───────────────────────────────────────────────────────


class TestCreateSigningKey:
    def test_defaults(self, t0: int) -> None:
        created = create_signing_key(now=t0)
        record = created.record

        assert created.plaintext.startswith("sk_live_")
        assert record.key_id.startswith("key_")
        assert record.hash == hash_key(created.plaintext)
        assert record.created_at == t0
        assert record.expires_at == t0 + 30 * DAY_MS
        assert record.rotation_policy.ttl_ms == 30 * DAY_MS
        assert record.rotation_policy.overlap_ms == 24 * HOUR_MS
        assert record.metadata.environment == "live"
        assert record.metadata.created_by == "system"
        assert record.tenant_id is None
        assert record.deprecated_at is None
        assert record.destroyed_at is None
        assert key_status(record) is KeyStatus.ACTIVE

    def test_plaintext_not_in_record(self, t0: int) -> None:
        created = create_signing_key(now=t0)
        assert created.plaintext.encode() not in created.record.to_json()

    def test_options_override_config(self, t0: int) -> None:
        created = create_signing_key(
            prefix="pk",
            environment="TEST",
            tenant_id="merchant-42",
            created_by="user",
            ttl_ms=HOUR_MS,
            overlap_ms=10 * MINUTE_MS,
            now=t0,
        )
        assert created.plaintext.startswith("pk_test_")
        assert created.record.expires_at == t0 + HOUR_MS
        assert created.record.rotation_policy.overlap_ms == 10 * MINUTE_MS
        assert created.record.tenant_id == "merchant-42"
        assert created.record.metadata.created_by == "user"

    def test_config_supplies_defaults(self, t0: int) -> None:
        config = RotationConfig(prefix="ak", environment="dev", ttl_ms=DAY_MS, overlap_ms=HOUR_MS)
        created = create_signing_key(config=config, now=t0)
        assert created.plaintext.startswith("ak_dev_")
        assert created.record.rotation_policy.ttl_ms == DAY_MS
        assert created.record.rotation_policy.overlap_ms == HOUR_MS

    def test_overlap_clamped(self, t0: int) -> None:
        low = create_signing_key(overlap_ms=500, now=t0)
        high = create_signing_key(overlap_ms=30 * DAY_MS, now=t0)
        assert low.record.rotation_policy.overlap_ms == MIN_OVERLAP_MS
        assert high.record.rotation_policy.overlap_ms == MAX_OVERLAP_MS

    def test_invalid_created_by(self) -> None:
        with pytest.raises(InvalidArgumentError, match="createdBy"):
            create_signing_key(created_by="robot")

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_non_positive_ttl(self, ttl: int) -> None:
        with pytest.raises(InvalidArgumentError, match="ttlMs"):
            create_signing_key(ttl_ms=ttl)

    def test_invalid_environment(self) -> None:
        with pytest.raises(InvalidArgumentError):
            create_signing_key(environment="production")


# ─── deprecate / destroy ──────────────────────────────────────────────────────


class TestTransitions:
    def test_deprecate_sets_timestamp(self, t0: int) -> None:
        record = create_signing_key(now=t0).record
        deprecated = deprecate_signing_key(record, now=t0 + 1000)
        assert deprecated.deprecated_at == t0 + 1000
        assert key_status(deprecated) is KeyStatus.DEPRECATED
        # input untouched
        assert record.deprecated_at is None

    def test_deprecate_twice_rejected(self, t0: int) -> None:
        deprecated = deprecate_signing_key(create_signing_key(now=t0).record, now=t0)
        with pytest.raises(AlreadyDeprecatedError) as exc_info:
            deprecate_signing_key(deprecated, now=t0 + 1)
        assert exc_info.value.message == "Key already deprecated"

    def test_deprecate_destroyed_rejected(self, t0: int) -> None:
        destroyed = destroy_signing_key(create_signing_key(now=t0).record, now=t0)
        with pytest.raises(AlreadyDestroyedError):
            deprecate_signing_key(destroyed, now=t0 + 1)

    def test_deprecated_at_never_before_created_at(self, t0: int) -> None:
        record = create_signing_key(now=t0).record
        assert deprecate_signing_key(record, now=t0 - 5000).deprecated_at == t0

    def test_destroy_active_backfills_deprecated_at(self, t0: int) -> None:
        destroyed = destroy_signing_key(create_signing_key(now=t0).record, now=t0 + 10)
        assert destroyed.deprecated_at == t0 + 10
        assert destroyed.destroyed_at == t0 + 10
        assert key_status(destroyed) is KeyStatus.DESTROYED

    def test_destroy_keeps_existing_deprecated_at(self, t0: int) -> None:
        deprecated = deprecate_signing_key(create_signing_key(now=t0).record, now=t0 + 10)
        destroyed = destroy_signing_key(deprecated, now=t0 + 20)
        assert destroyed.deprecated_at == t0 + 10
        assert destroyed.destroyed_at == t0 + 20

    def test_destroy_is_idempotent(self, t0: int) -> None:
        once = destroy_signing_key(create_signing_key(now=t0).record, now=t0 + 10)
        twice = destroy_signing_key(once, now=t0 + 99_999)
        assert twice == once

    def test_timestamps_ordered(self, t0: int) -> None:
        deprecated = deprecate_signing_key(create_signing_key(now=t0).record, now=t0 + 50)
        destroyed = destroy_signing_key(deprecated, now=t0 + 10)
        assert destroyed.created_at <= destroyed.deprecated_at <= destroyed.destroyed_at


# ─── evaluate_validity ────────────────────────────────────────────────────────


class TestEvaluateValidity:
    def test_active_within_ttl(self, t0: int) -> None:
        record = create_signing_key(ttl_ms=HOUR_MS, now=t0).record
        validity = evaluate_validity(record, now=t0 + MINUTE_MS)
        assert validity.valid is True
        assert validity.status is KeyStatus.ACTIVE
        assert validity.reason is None
        assert validity.remaining_ms == HOUR_MS - MINUTE_MS

    def test_active_past_ttl_still_valid(self, t0: int) -> None:
        record = create_signing_key(ttl_ms=HOUR_MS, now=t0).record
        validity = evaluate_validity(record, now=t0 + 3 * HOUR_MS)
        assert validity.valid is True
        assert validity.reason == "Key past TTL by 2h - rotation recommended"
        assert validity.remaining_ms is None
        assert needs_rotation(record, now=t0 + 3 * HOUR_MS) is True

    def test_needs_rotation_false_before_ttl_and_when_deprecated(self, t0: int) -> None:
        record = create_signing_key(ttl_ms=HOUR_MS, now=t0).record
        assert needs_rotation(record, now=t0) is False
        deprecated = deprecate_signing_key(record, now=t0)
        assert needs_rotation(deprecated, now=t0 + 2 * HOUR_MS) is False

    def test_deprecated_inside_overlap(self, t0: int) -> None:
        record = create_signing_key(overlap_ms=2 * HOUR_MS, now=t0).record
        deprecated = deprecate_signing_key(record, now=t0)
        validity = evaluate_validity(deprecated, now=t0 + HOUR_MS)
        assert validity.valid is True
        assert validity.status is KeyStatus.DEPRECATED
        assert validity.remaining_ms == HOUR_MS
        assert validity.reason == "Deprecated - 1h remaining in overlap"

    def test_overlap_boundary(self, t0: int) -> None:
        record = create_signing_key(overlap_ms=10 * MINUTE_MS, now=t0).record
        deprecated = deprecate_signing_key(record, now=t0)
        end = deprecated.deprecated_at + deprecated.rotation_policy.overlap_ms

        for t in (t0, t0 + 1, end - MINUTE_MS, end - 1):
            assert evaluate_validity(deprecated, now=t).valid is True, t
        for t in (end, end + 1, end + DAY_MS):
            validity = evaluate_validity(deprecated, now=t)
            assert validity.valid is False, t
            assert validity.reason == OVERLAP_ENDED_REASON
            assert validity.remaining_ms == 0
            assert validity.status is KeyStatus.DEPRECATED

    def test_destroyed_never_valid(self, t0: int) -> None:
        destroyed = destroy_signing_key(create_signing_key(now=t0).record, now=t0)
        validity = evaluate_validity(destroyed, now=t0)
        assert validity.valid is False
        assert validity.status is KeyStatus.DESTROYED
        assert validity.reason == DESTROYED_REASON
        assert validity.remaining_ms == 0

    def test_rotation_overdue_then_overlap_ends(self, t0: int) -> None:
        """ttl 1000ms / overlap 500ms: overdue but valid, then invalid 501ms after deprecation."""
        record = create_signing_key(ttl_ms=1000, now=t0).record
        # overlap below the clamp floor is only reachable on hand-built records
        record = replace(record, rotation_policy=replace(record.rotation_policy, overlap_ms=500))

        at = t0 + 1500
        overdue = evaluate_validity(record, now=at)
        assert overdue.valid is True
        assert overdue.status is KeyStatus.ACTIVE
        assert "rotation recommended" in overdue.reason
        assert needs_rotation(record, now=at) is True

        deprecated = deprecate_signing_key(record, now=at)
        assert evaluate_validity(deprecated, now=at + 499).valid is True
        ended = evaluate_validity(deprecated, now=at + 501)
        assert ended.valid is False
        assert ended.reason == OVERLAP_ENDED_REASON


# ─── rotate_signing_key ───────────────────────────────────────────────────────


class TestRotateSigningKey:
    def test_rotation_properties(self, t0: int) -> None:
        record = create_signing_key(tenant_id="m-1", environment="test", now=t0).record
        result = rotate_signing_key(record, now=t0 + HOUR_MS)

        assert result.old_record.deprecated_at == t0 + HOUR_MS
        assert result.new_record.deprecated_at is None
        assert result.new_record.key_id != result.old_record.key_id
        assert result.new_record.hash == hash_key(result.plaintext)
        assert result.new_record.created_at == t0 + HOUR_MS

    def test_inherits_tenant_environment_and_policy(self, t0: int) -> None:
        record = create_signing_key(
            tenant_id="m-1", environment="test", ttl_ms=DAY_MS, overlap_ms=HOUR_MS, now=t0
        ).record
        new = rotate_signing_key(record, now=t0).new_record
        assert new.tenant_id == "m-1"
        assert new.metadata.environment == "test"
        assert new.metadata.created_by == "auto-rotation"
        assert new.rotation_policy == record.rotation_policy

    def test_overrides(self, t0: int) -> None:
        record = create_signing_key(tenant_id="m-1", now=t0).record
        result = rotate_signing_key(
            record,
            prefix="pk",
            environment="staging",
            ttl_ms=2 * DAY_MS,
            overlap_ms=2 * HOUR_MS,
            created_by="user",
            now=t0,
        )
        assert result.plaintext.startswith("pk_staging_")
        assert result.new_record.rotation_policy.ttl_ms == 2 * DAY_MS
        assert result.new_record.rotation_policy.overlap_ms == 2 * HOUR_MS
        assert result.new_record.metadata.created_by == "user"

    def test_already_deprecated_passes_through(self, t0: int) -> None:
        deprecated = deprecate_signing_key(create_signing_key(now=t0).record, now=t0)
        result = rotate_signing_key(deprecated, now=t0 + MINUTE_MS)
        assert result.old_record == deprecated

    def test_destroyed_rejected(self, t0: int) -> None:
        destroyed = destroy_signing_key(create_signing_key(now=t0).record, now=t0)
        with pytest.raises(CannotRotateDestroyedError) as exc_info:
            rotate_signing_key(destroyed, now=t0)
        assert exc_info.value.code == "cannot_rotate_destroyed"

    def test_old_key_valid_through_overlap(self, t0: int) -> None:
        record = create_signing_key(overlap_ms=HOUR_MS, now=t0).record
        result = rotate_signing_key(record, now=t0)
        assert evaluate_validity(result.old_record, now=t0 + HOUR_MS - 1).valid is True
        assert evaluate_validity(result.old_record, now=t0 + HOUR_MS).valid is False
        assert evaluate_validity(result.new_record, now=t0 + HOUR_MS).valid is True
