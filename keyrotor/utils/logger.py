"""structlog configuration and request correlation for keyrotor.

Callers bind ``key_id`` / ``tenant_id`` as keyword fields instead of
formatting them into the message. Two processors run on every entry:

  - add_request_id: copies the id set by request_context() onto the entry,
    so all lines logged while one request is authenticated share it.
  - redact_secrets: last line of defence for credential material. Fields
    that can only ever hold a secret are replaced with "[REDACTED]"; secret
    hashes are cut to an 8-character prefix (see short_hash()).
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import structlog
from structlog.types import EventDict, Processor

request_id_var: ContextVar[Optional[str]] = ContextVar("keyrotor_request_id", default=None)

REDACTED = "[REDACTED]"

_SECRET_FIELDS = frozenset(
    {"plaintext", "secret", "api_key", "static_key", "authorization", "x_api_key"}
)
_HASH_FIELDS = frozenset({"hash", "secret_hash"})


def short_hash(secret_hash: Optional[str]) -> Optional[str]:
    """Return the first 8 characters of a secret hash for log correlation."""
    if not secret_hash:
        return None
    return secret_hash[:8]


@contextmanager
def request_context(request_id: str) -> Iterator[str]:
    """Tag every log entry emitted inside the block with ``request_id``.

    Nested blocks restore the outer id on exit.
    """
    token = request_id_var.set(request_id)
    try:
        yield request_id
    finally:
        request_id_var.reset(token)


def add_request_id(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def redact_secrets(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    for field in _SECRET_FIELDS.intersection(event_dict):
        if event_dict[field] is not None:
            event_dict[field] = REDACTED
    for field in _HASH_FIELDS.intersection(event_dict):
        value = event_dict[field]
        event_dict[field] = short_hash(value) if isinstance(value, str) else value
    return event_dict


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """(Re)configure structlog for the package.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_output: JSON lines when True, coloured console output otherwise.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "keyrotor") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# Defaults until load_config() applies Config.logging.
configure_logging()
