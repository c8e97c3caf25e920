"""keyrotor authentication boundary — header extraction and FastAPI dependency."""

from keyrotor.auth.middleware import (
    AUTH_HEADER_BEARER,
    AUTH_HEADER_NAME,
    AuthErrorCode,
    AuthResult,
    StaticKeyResult,
    auth_error,
    auth_result_to_dict,
    authenticate,
    extract_api_key,
    require_api_key,
    validate_static_key,
)

__all__ = [
    "AUTH_HEADER_BEARER",
    "AUTH_HEADER_NAME",
    "AuthErrorCode",
    "AuthResult",
    "StaticKeyResult",
    "auth_error",
    "auth_result_to_dict",
    "authenticate",
    "extract_api_key",
    "require_api_key",
    "validate_static_key",
]
