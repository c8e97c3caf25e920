"""Signing-key lifecycle engine.

Public API:
  - create_signing_key()     — new record + one-time plaintext secret
  - deprecate_signing_key()  — start the overlap window
  - destroy_signing_key()    — hard invalidation (idempotent)
  - evaluate_validity()      — validity/status/reason/remaining at a given instant
  - key_status()             — active | deprecated | destroyed
  - needs_rotation()         — active and past TTL (for external schedulers)
  - rotate_signing_key()     — deprecate + create replacement
  - hash_key(), parse_key_format(), clamp_overlap(), format_duration()
"""

from __future__ import annotations

from keyrotor.lifecycle.engine import (
    create_signing_key,
    deprecate_signing_key,
    destroy_signing_key,
    evaluate_validity,
    key_status,
    needs_rotation,
    now_ms,
    rotate_signing_key,
)
from keyrotor.lifecycle.keygen import (
    clamp_overlap,
    format_duration,
    generate_key,
    generate_key_id,
    hash_key,
    is_valid_key_format,
    parse_key_format,
)
from keyrotor.lifecycle.models import (
    CreatedKey,
    KeyMetadata,
    KeyParts,
    KeyStatus,
    RotationPolicy,
    RotationResult,
    SigningKey,
    Validity,
)

__all__ = [
    # Records
    "SigningKey",
    "RotationPolicy",
    "KeyMetadata",
    "KeyStatus",
    "Validity",
    "CreatedKey",
    "RotationResult",
    "KeyParts",
    # Engine
    "create_signing_key",
    "deprecate_signing_key",
    "destroy_signing_key",
    "evaluate_validity",
    "key_status",
    "needs_rotation",
    "rotate_signing_key",
    "now_ms",
    # Helpers
    "clamp_overlap",
    "format_duration",
    "generate_key",
    "generate_key_id",
    "hash_key",
    "is_valid_key_format",
    "parse_key_format",
]
