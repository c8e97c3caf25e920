"""keyrotor authentication boundary.

Turns request headers into an access decision:

Header extraction precedence:
  1. X-API-Key: <secret>                (preferred)
  2. Authorization: Bearer <secret>     (fallback; scheme is case-insensitive)

Validation order in authenticate():
  1. KeyStore.validate() when a store is configured — rotating signing keys
  2. Static shared secret (KEYROTOR_STATIC_API_KEY), compared in constant time
     — the non-rotating credential mode kept for backward compatibility

A storage failure during step 1 is logged and falls through to step 2.

FastAPI integration:

    auth = require_api_key(store, static_key=get_static_api_key())

    @app.get("/orders")
    async def orders(result: AuthResult = Depends(auth)): ...
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from fastapi import HTTPException, Request

from keyrotor.store.keystore import KeyStore
from keyrotor.utils.logger import get_logger, request_context
from keyrotor.utils.ulid import generate_ulid

logger = get_logger(__name__)

AUTH_HEADER_NAME = "X-API-Key"
AUTH_HEADER_BEARER = "Authorization"
REQUEST_ID_HEADER = "X-Request-ID"

WWW_AUTHENTICATE = 'Bearer realm="api"'


class AuthErrorCode(str, Enum):
    """Standardized error codes for auth failures."""

    MISSING_KEY = "AUTH_MISSING_KEY"
    INVALID_KEY = "AUTH_INVALID_KEY"
    EXPIRED_KEY = "AUTH_EXPIRED_KEY"
    MALFORMED_HEADER = "AUTH_MALFORMED_HEADER"


_STATUS_BY_CODE: dict[AuthErrorCode, int] = {
    AuthErrorCode.MISSING_KEY: 401,
    AuthErrorCode.INVALID_KEY: 403,
    AuthErrorCode.EXPIRED_KEY: 403,
    AuthErrorCode.MALFORMED_HEADER: 400,
}

_DEFAULT_MESSAGES: dict[AuthErrorCode, str] = {
    AuthErrorCode.MISSING_KEY: "Authentication required",
    AuthErrorCode.INVALID_KEY: "Access denied",
    AuthErrorCode.EXPIRED_KEY: "API key has expired",
    AuthErrorCode.MALFORMED_HEADER: "Malformed authorization header",
}


@dataclass(frozen=True)
class AuthResult:
    """Outcome of authenticate().

    source is "store" (rotating signing key), "static" (shared secret) or
    "none" (rejected before any credential matched).
    """

    valid: bool
    source: str = "none"
    code: Optional[AuthErrorCode] = None
    error: Optional[str] = None
    key_id: Optional[str] = None
    tenant_id: Optional[str] = None
    environment: Optional[str] = None
    is_deprecated: bool = False
    remaining_ms: Optional[int] = None
    warning: Optional[str] = None


@dataclass(frozen=True)
class StaticKeyResult:
    """Outcome of validate_static_key()."""

    valid: bool
    code: Optional[AuthErrorCode] = None
    error: Optional[str] = None
    warning: Optional[str] = None


# ─── Header extraction ────────────────────────────────────────────────────────


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def extract_api_key(headers: Optional[Mapping[str, str]]) -> tuple[Optional[str], Optional[str]]:
    """Extract the secret from request headers.

    Returns:
        (key, header_name) — or (None, None) when no usable header is present.
    """
    if not headers:
        return None, None

    x_api_key = _header(headers, AUTH_HEADER_NAME)
    if x_api_key and x_api_key.strip():
        return x_api_key.strip(), AUTH_HEADER_NAME

    authorization = _header(headers, AUTH_HEADER_BEARER)
    if authorization:
        parts = authorization.split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer" and parts[1].strip():
            return parts[1].strip(), AUTH_HEADER_BEARER

    return None, None


# ─── Static shared secret ─────────────────────────────────────────────────────


def validate_static_key(provided: Optional[str], expected: Optional[str]) -> StaticKeyResult:
    """Compare ``provided`` with the static secret in constant time.

    No expected secret configured means the endpoint is unprotected
    (development mode): the result is valid and carries a warning.
    """
    if not expected:
        return StaticKeyResult(
            valid=True,
            warning="No API key configured - endpoint is unprotected",
        )

    if not provided:
        return StaticKeyResult(
            valid=False,
            code=AuthErrorCode.MISSING_KEY,
            error=(
                "API key required. Provide via X-API-Key header or "
                "Authorization: Bearer <key>"
            ),
        )

    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        return StaticKeyResult(
            valid=False, code=AuthErrorCode.INVALID_KEY, error="Invalid API key"
        )

    return StaticKeyResult(valid=True)


# ─── Combined validation ──────────────────────────────────────────────────────


async def authenticate(
    headers: Optional[Mapping[str, str]],
    store: Optional[KeyStore] = None,
    static_key: Optional[str] = None,
    now: Optional[int] = None,
) -> AuthResult:
    """Authenticate a request from its headers.

    Rotating keys in ``store`` take precedence; ``static_key`` is the fallback.

    An unset ``static_key`` never opens the endpoint here: with no store match
    and no static secret the result is AUTH_INVALID_KEY. The unprotected
    development mode is reported only by validate_static_key().
    """
    provided, _source_header = extract_api_key(headers)
    if not provided:
        return AuthResult(
            valid=False,
            code=AuthErrorCode.MISSING_KEY,
            error="API key required",
        )

    if store is not None:
        try:
            decision = await store.validate(provided, now=now)
        except Exception as exc:
            logger.warning(
                "Key store lookup failed — falling back to static key",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        else:
            if decision.found and decision.valid:
                if decision.is_deprecated:
                    logger.info(
                        "Authenticated with deprecated key",
                        key_id=decision.key_id,
                        tenant_id=decision.tenant_id,
                        remaining_ms=decision.remaining_ms,
                    )
                return AuthResult(
                    valid=True,
                    source="store",
                    key_id=decision.key_id,
                    tenant_id=decision.tenant_id,
                    environment=decision.environment,
                    is_deprecated=decision.is_deprecated,
                    remaining_ms=decision.remaining_ms,
                    warning=decision.reason,
                )
            if decision.found:
                return AuthResult(
                    valid=False,
                    source="store",
                    code=AuthErrorCode.EXPIRED_KEY,
                    error=decision.reason or "Key has expired",
                    key_id=decision.key_id,
                    tenant_id=decision.tenant_id,
                    environment=decision.environment,
                    is_deprecated=True,
                    remaining_ms=0,
                )

    if static_key and validate_static_key(provided, static_key).valid:
        return AuthResult(valid=True, source="static")

    return AuthResult(
        valid=False,
        code=AuthErrorCode.INVALID_KEY,
        error="Invalid API key",
    )


# ─── FastAPI integration ──────────────────────────────────────────────────────


def auth_error(code: AuthErrorCode, message: Optional[str] = None) -> HTTPException:
    """Build the standardized HTTPException for an auth failure code."""
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(code, 403),
        detail={
            "success": False,
            "error": message or _DEFAULT_MESSAGES.get(code, "Access denied"),
            "code": code.value,
        },
        headers={"WWW-Authenticate": WWW_AUTHENTICATE},
    )


def require_api_key(
    store: Optional[KeyStore] = None,
    static_key: Optional[str] = None,
) -> Callable[[Request], Awaitable[AuthResult]]:
    """Build a FastAPI Depends()-compatible dependency enforcing authentication.

    The dependency returns the AuthResult on success and raises the mapped
    HTTPException (401/403) otherwise, before the route handler runs.

    Log lines emitted while authenticating carry the caller's X-Request-ID,
    or a fresh ULID when the header is absent.
    """

    async def dependency(request: Request) -> AuthResult:
        request_id = (_header(request.headers, REQUEST_ID_HEADER) or "").strip()
        with request_context(request_id or generate_ulid()):
            result = await authenticate(request.headers, store=store, static_key=static_key)
            if result.valid:
                return result

            logger.warning(
                "Authentication failed",
                code=result.code.value if result.code else None,
                key_id=result.key_id,
                path=str(request.url.path),
                method=request.method,
            )
        raise auth_error(result.code or AuthErrorCode.INVALID_KEY, result.error)

    return dependency


def auth_result_to_dict(result: AuthResult) -> dict[str, Any]:
    """Serialise an AuthResult for audit logging or JSON responses."""
    return {
        "valid": result.valid,
        "source": result.source,
        "code": result.code.value if result.code else None,
        "error": result.error,
        "keyId": result.key_id,
        "merchantId": result.tenant_id,
        "environment": result.environment,
        "isDeprecated": result.is_deprecated,
        "remainingMs": result.remaining_ms,
    }
