"""keyrotor error taxonomy.

Every exception carries a stable ``code`` for callers that map errors to
HTTP responses or CLI messages, and a human-readable ``message``.

  - InvalidArgumentError        caller error (bad enum value, malformed secret/record)
  - AlreadyDeprecatedError      lifecycle precondition violation
  - AlreadyDestroyedError       lifecycle precondition violation
  - CannotRotateDestroyedError  lifecycle precondition violation
  - ConflictError               store refused a write that would break index consistency
  - StoreUnavailableError       no storage backend configured

None of these are retryable: retrying without changing state fails identically.
Not-found is never an exception — lookups return None, delete returns False.
"""

from __future__ import annotations


class KeyRotorError(Exception):
    """Base class for all keyrotor errors."""

    code: str = "keyrotor_error"

    def __init__(self, message: str = "keyrotor error") -> None:
        super().__init__(message)
        self.message = message


class InvalidArgumentError(KeyRotorError):
    """Raised for an out-of-range enum value or a malformed secret or record."""

    code: str = "invalid_argument"

    def __init__(self, message: str = "Invalid argument") -> None:
        super().__init__(message)


class AlreadyDeprecatedError(KeyRotorError):
    """Raised when deprecating a key whose overlap window has already started."""

    code: str = "already_deprecated"

    def __init__(self, message: str = "Key already deprecated") -> None:
        super().__init__(message)


class AlreadyDestroyedError(KeyRotorError):
    """Raised when deprecating a key that has been destroyed."""

    code: str = "already_destroyed"

    def __init__(self, message: str = "Cannot deprecate destroyed key") -> None:
        super().__init__(message)


class CannotRotateDestroyedError(KeyRotorError):
    """Raised when rotating a destroyed key."""

    code: str = "cannot_rotate_destroyed"

    def __init__(self, message: str = "Cannot rotate destroyed key") -> None:
        super().__init__(message)


class ConflictError(KeyRotorError):
    """Raised when a store write would leave the indexes inconsistent.

    HTTP mapping: 409 Conflict
    """

    code: str = "conflict"

    def __init__(self, message: str = "Signing key conflict") -> None:
        super().__init__(message)


class StoreUnavailableError(KeyRotorError):
    """Raised by every KeyStore operation when no storage backend was supplied.

    This is a configuration error and is fatal to the calling operation.
    """

    code: str = "store_unavailable"

    def __init__(self, message: str = "Storage backend is required") -> None:
        super().__init__(message)
