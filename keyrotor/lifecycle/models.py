"""SigningKey record and lifecycle value types.

SigningKey is the sole persistent entity. It is immutable: every lifecycle
transition returns a new value via dataclasses.replace(), and callers persist
the returned value.

Wire/storage shape (JSON, timestamps are epoch milliseconds):

    {"keyId": ..., "hash": ..., "createdAt": ..., "expiresAt": ...,
     "deprecatedAt": ..., "destroyedAt": ...,
     "rotationPolicy": {"ttlMs": ..., "overlapMs": ...},
     "metadata": {"merchantId": ..., "environment": ..., "createdBy": ...}}

The plaintext secret is never part of this record.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from keyrotor.errors import InvalidArgumentError

# ─── KeyStatus ────────────────────────────────────────────────────────────────


class KeyStatus(str, Enum):
    """Lifecycle state derived from which timestamps are set.

    active → deprecated → destroyed, forward only.
    """

    ACTIVE = "active"
    DEPRECATED = "deprecated"
    DESTROYED = "destroyed"


# ─── Record ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RotationPolicy:
    """Per-key rotation policy, copied from configuration at creation."""

    ttl_ms: int
    overlap_ms: int


@dataclass(frozen=True)
class KeyMetadata:
    """Immutable creation-time metadata.

    tenant_id is serialised as ``merchantId`` for compatibility with
    previously persisted records.
    """

    environment: str
    created_by: str
    tenant_id: Optional[str] = None


@dataclass(frozen=True)
class SigningKey:
    """A signing key record: digest only, never the plaintext.

    Invariants:
      - deprecated_at, if set, is >= created_at
      - destroyed_at, if set, is >= deprecated_at (destroy() backfills deprecated_at)
      - destroyed_at set ⇒ never valid
    """

    key_id: str
    hash: str
    created_at: int
    expires_at: int
    rotation_policy: RotationPolicy
    metadata: KeyMetadata
    deprecated_at: Optional[int] = None
    destroyed_at: Optional[int] = None

    @property
    def tenant_id(self) -> Optional[str]:
        return self.metadata.tenant_id

    # ── Serialisation ─────────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        """Return the wire-format dict, preserving field order."""
        return {
            "keyId": self.key_id,
            "hash": self.hash,
            "createdAt": self.created_at,
            "expiresAt": self.expires_at,
            "deprecatedAt": self.deprecated_at,
            "destroyedAt": self.destroyed_at,
            "rotationPolicy": {
                "ttlMs": self.rotation_policy.ttl_ms,
                "overlapMs": self.rotation_policy.overlap_ms,
            },
            "metadata": {
                "merchantId": self.metadata.tenant_id,
                "environment": self.metadata.environment,
                "createdBy": self.metadata.created_by,
            },
        }

    def to_json(self) -> bytes:
        """Compact UTF-8 JSON, the exact bytes written to every direct index."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, raw: Any) -> "SigningKey":
        """Build a SigningKey from its wire-format dict.

        Raises:
            InvalidArgumentError: If a required field is missing or mistyped.
        """
        if not isinstance(raw, dict):
            raise InvalidArgumentError("Malformed signing key record: not an object")
        try:
            policy = raw["rotationPolicy"]
            metadata = raw.get("metadata") or {}
            return cls(
                key_id=_require_str(raw, "keyId"),
                hash=_require_str(raw, "hash"),
                created_at=_require_int(raw, "createdAt"),
                expires_at=_require_int(raw, "expiresAt"),
                deprecated_at=_optional_int(raw, "deprecatedAt"),
                destroyed_at=_optional_int(raw, "destroyedAt"),
                rotation_policy=RotationPolicy(
                    ttl_ms=_require_int(policy, "ttlMs"),
                    overlap_ms=_require_int(policy, "overlapMs"),
                ),
                metadata=KeyMetadata(
                    tenant_id=metadata.get("merchantId"),
                    environment=metadata.get("environment", ""),
                    created_by=metadata.get("createdBy", ""),
                ),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise InvalidArgumentError(f"Malformed signing key record: {exc}") from exc

    @classmethod
    def from_json(cls, data: bytes | str) -> "SigningKey":
        """Parse a record previously written by to_json()."""
        try:
            raw = json.loads(data)
        except (ValueError, UnicodeDecodeError) as exc:
            raise InvalidArgumentError(f"Malformed signing key JSON: {exc}") from exc
        return cls.from_dict(raw)


def _require_str(raw: dict, name: str) -> str:
    value = raw[name]
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a string")
    return value


def _require_int(raw: dict, name: str) -> int:
    value = raw[name]
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an integer")
    return value


def _optional_int(raw: dict, name: str) -> Optional[int]:
    value = raw.get(name)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise TypeError(f"{name} must be an integer or null")
    return value


# ─── Engine results ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Validity:
    """Result of evaluate_validity(record, now).

    remaining_ms is the time left in the TTL (active) or overlap window
    (deprecated); 0 once invalid; None when an active key is past its TTL.
    """

    valid: bool
    status: KeyStatus
    reason: Optional[str]
    remaining_ms: Optional[int]


@dataclass(frozen=True)
class CreatedKey:
    """A freshly created record plus its one-time plaintext secret."""

    record: SigningKey
    plaintext: str


@dataclass(frozen=True)
class RotationResult:
    """Output of rotate_signing_key(): the deprecated input and its replacement."""

    old_record: SigningKey
    new_record: SigningKey
    plaintext: str


@dataclass(frozen=True)
class KeyParts:
    """Components of a well-formed ``{prefix}_{environment}_{random}`` secret."""

    prefix: str
    environment: str
    random: str
