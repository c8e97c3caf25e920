"""ULID generation utility for keyrotor.

Provides ``generate_ulid()`` — a 26-character ULID (Universally Unique
Lexicographically Sortable Identifier) used as the random body of every
signing key identifier (``key_<ulid>``).

ULID specification (https://github.com/ulid/spec):
  - 26 characters, Crockford Base32 encoded (0-9A-HJKMNP-TV-Z)
  - 48-bit millisecond timestamp + 80-bit random component
  - URL-safe — no special characters, no padding

Uses the `python-ulid` library (see pyproject.toml) — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: A 26-character ULID string (e.g., ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``).
    """
    return str(ULID())
