"""Config loading for keyrotor.

Reads `.keyrotor/config.yaml` (or `~/.keyrotor/config.yaml`).
Raises SystemExit on parse errors, missing `version` field or invalid values.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. KEYROTOR_CONFIG environment variable (if set)
  3. `.keyrotor/config.yaml` (working directory — for development)
  4. `~/.keyrotor/config.yaml` (home directory — for production deployments)

Environment variable overrides:
  KEYROTOR_STORE_PATH — overrides store.path
  KEYROTOR_LOG_LEVEL  — overrides logging.level
  KEYROTOR_CONFIG     — sets an explicit config file path to try first

The static fallback secret is read from KEYROTOR_STATIC_API_KEY only; it is
never accepted from the config file.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import NoReturn, Optional

import yaml

from keyrotor.constants import (
    DEFAULT_ENVIRONMENT,
    DEFAULT_OVERLAP_MS,
    DEFAULT_PREFIX,
    DEFAULT_TTL_MS,
    MAX_OVERLAP_MS,
    MIN_OVERLAP_MS,
    VALID_ENVIRONMENTS,
    VALID_PREFIXES,
)
from keyrotor.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# ─── Validation sets ─────────────────────────────────────────────────────────

VALID_STORE_BACKENDS: frozenset[str] = frozenset({"memory", "sqlite"})

VALID_LOG_LEVELS: frozenset[str] = frozenset(
    {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
)

DEFAULT_STORE_PATH = "~/.keyrotor/keys.db"

DEFAULT_CONFIG_PATHS = [
    ".keyrotor/config.yaml",
    os.path.expanduser("~/.keyrotor/config.yaml"),
]

STATIC_API_KEY_ENV = "KEYROTOR_STATIC_API_KEY"


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RotationConfig:
    """Defaults applied to every key the lifecycle engine creates.

    Frozen: the engine receives this value explicitly and never mutates it.
    overlap_ms is stored as configured; clamp_overlap() applies the
    [5 minutes, 7 days] bounds when a key is created.
    """

    prefix: str = DEFAULT_PREFIX
    environment: str = DEFAULT_ENVIRONMENT
    ttl_ms: int = DEFAULT_TTL_MS
    overlap_ms: int = DEFAULT_OVERLAP_MS


@dataclass
class StoreConfig:
    """Storage backend configuration."""

    backend: str = "memory"  # "memory" | "sqlite"
    path: str = DEFAULT_STORE_PATH


@dataclass
class LoggingConfig:
    """structlog output configuration."""

    level: str = "INFO"
    json: bool = True


@dataclass
class Config:
    """Root configuration object populated from .keyrotor/config.yaml.

    All fields have safe defaults — keyrotor can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    rotation: RotationConfig = field(default_factory=RotationConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On an invalid rotation, store or logging value.
        """
        # ── Rotation ──────────────────────────────────────────────────────────
        rotation_raw = raw.get("rotation") or {}
        prefix = str(rotation_raw.get("prefix", DEFAULT_PREFIX)).lower()
        if prefix not in VALID_PREFIXES:
            _config_error(
                f"CONFIG ERROR: Invalid rotation.prefix: '{prefix}'. "
                f"Supported values: {list(VALID_PREFIXES)}."
            )
        environment = str(rotation_raw.get("environment", DEFAULT_ENVIRONMENT)).lower()
        if environment not in VALID_ENVIRONMENTS:
            _config_error(
                f"CONFIG ERROR: Invalid rotation.environment: '{environment}'. "
                f"Supported values: {list(VALID_ENVIRONMENTS)}."
            )
        ttl_ms = rotation_raw.get("ttl_ms", DEFAULT_TTL_MS)
        if not isinstance(ttl_ms, int) or isinstance(ttl_ms, bool) or ttl_ms <= 0:
            _config_error(
                f"CONFIG ERROR: rotation.ttl_ms must be a positive integer, got {ttl_ms!r}."
            )
        overlap_ms = rotation_raw.get("overlap_ms", DEFAULT_OVERLAP_MS)
        if not isinstance(overlap_ms, int) or isinstance(overlap_ms, bool) or overlap_ms <= 0:
            _config_error(
                f"CONFIG ERROR: rotation.overlap_ms must be a positive integer, "
                f"got {overlap_ms!r}."
            )
        if not MIN_OVERLAP_MS <= overlap_ms <= MAX_OVERLAP_MS:
            logger.warning(
                "rotation.overlap_ms outside allowed range — new keys will be clamped",
                overlap_ms=overlap_ms,
                min_overlap_ms=MIN_OVERLAP_MS,
                max_overlap_ms=MAX_OVERLAP_MS,
            )
        rotation = RotationConfig(
            prefix=prefix,
            environment=environment,
            ttl_ms=ttl_ms,
            overlap_ms=overlap_ms,
        )

        # ── Store ─────────────────────────────────────────────────────────────
        store_raw = raw.get("store") or {}
        backend = store_raw.get("backend", "memory")
        if backend not in VALID_STORE_BACKENDS:
            _config_error(
                f"CONFIG ERROR: Invalid store.backend: '{backend}'. "
                f"Supported values: {sorted(VALID_STORE_BACKENDS)}."
            )
        store = StoreConfig(
            backend=backend,
            path=store_raw.get("path", DEFAULT_STORE_PATH),
        )

        # ── Logging ───────────────────────────────────────────────────────────
        logging_raw = raw.get("logging") or {}
        level = str(logging_raw.get("level", "INFO")).upper()
        if level not in VALID_LOG_LEVELS:
            _config_error(
                f"CONFIG ERROR: Invalid logging.level: '{level}'. "
                f"Supported values: {sorted(VALID_LOG_LEVELS)}."
            )
        logging_config = LoggingConfig(
            level=level,
            json=bool(logging_raw.get("json", True)),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            rotation=rotation,
            store=store,
            logging=logging_config,
            path=path,
        )


def _config_error(msg: str) -> NoReturn:
    """Write a config error to stderr and refuse to continue."""
    print(msg, file=sys.stderr)
    raise SystemExit(1)


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate keyrotor configuration.

    If no file is found at any of the search paths, returns default Config
    (not an error). If a file is found but invalid, writes error to stderr
    and raises SystemExit(1).

    Environment overrides are applied after loading (or defaulting).
    structlog is reconfigured from the resulting logging section.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, or an invalid section value.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("KEYROTOR_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        config = Config.defaults()
        _apply_env_overrides(config)
        configure_logging(log_level=config.logging.level, json_output=config.logging.json)
        return config

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _config_error(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "keyrotor refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _config_error(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _config_error(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _config_error(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _config_error(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _config_error(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = Config.from_dict(raw, path=found_path)
    _apply_env_overrides(config)
    configure_logging(log_level=config.logging.level, json_output=config.logging.json)

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        store_backend=config.store.backend,
    )
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply environment variable overrides to a Config object in-place.

    Handles:
      KEYROTOR_STORE_PATH — overrides config.store.path
      KEYROTOR_LOG_LEVEL  — overrides config.logging.level (SystemExit(1) if invalid)
    """
    env_path = os.environ.get("KEYROTOR_STORE_PATH")
    if env_path:
        config.store.path = env_path

    env_level = os.environ.get("KEYROTOR_LOG_LEVEL")
    if env_level is not None:
        level = env_level.upper()
        if level not in VALID_LOG_LEVELS:
            _config_error(
                f"CONFIG ERROR: KEYROTOR_LOG_LEVEL environment variable is not a valid "
                f"log level: '{env_level}'"
            )
        config.logging.level = level


def get_static_api_key() -> Optional[str]:
    """Return the static fallback secret from KEYROTOR_STATIC_API_KEY, or None."""
    value = os.environ.get(STATIC_API_KEY_ENV)
    return value or None
