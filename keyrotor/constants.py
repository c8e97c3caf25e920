"""Shared constants for keyrotor.

All lifecycle defaults, bounds and enumerations used across modules are
defined here. No magic numbers in other modules — import from here.
"""

# ─── Time units (milliseconds) ───────────────────────────────────────────────

SECOND_MS: int = 1_000
MINUTE_MS: int = 60 * SECOND_MS
HOUR_MS: int = 60 * MINUTE_MS
DAY_MS: int = 24 * HOUR_MS

# ─── Rotation policy ─────────────────────────────────────────────────────────

# Recommended key lifetime before rotation. Advisory only: a key past its TTL
# keeps validating until it is deprecated.
DEFAULT_TTL_MS: int = 30 * DAY_MS

# Grace period during which a deprecated key still validates.
DEFAULT_OVERLAP_MS: int = 24 * HOUR_MS

# Overlap bounds. clamp_overlap() forces every new key's overlap into this range.
MIN_OVERLAP_MS: int = 5 * MINUTE_MS
MAX_OVERLAP_MS: int = 7 * DAY_MS

# ─── Key format ──────────────────────────────────────────────────────────────
# {prefix}_{environment}_{random}   e.g. sk_live_a1B2c3D4...

VALID_PREFIXES: tuple[str, ...] = ("sk", "pk", "ak", "tk")
VALID_ENVIRONMENTS: tuple[str, ...] = ("live", "test", "dev", "staging")
VALID_CREATED_BY: tuple[str, ...] = ("system", "auto-rotation", "user")

DEFAULT_PREFIX: str = "sk"
DEFAULT_ENVIRONMENT: str = "live"
DEFAULT_CREATED_BY: str = "system"
ROTATION_CREATED_BY: str = "auto-rotation"

KEY_RANDOM_LENGTH: int = 32
KEY_RANDOM_ALPHABET: str = (
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
)

KEY_ID_PREFIX: str = "key_"

# ─── Store index naming ──────────────────────────────────────────────────────
# Must stay bit-for-bit stable: existing persisted data is addressed by these.

HASH_INDEX_PREFIX: str = "hash:"
KEY_ID_INDEX_PREFIX: str = "key:"
TENANT_INDEX_PREFIX: str = "merchant:"
TENANT_INDEX_SUFFIX: str = ":keys"

# Tenant id used in the tenant index for keys without a tenant.
GLOBAL_TENANT_ID: str = "_global"
