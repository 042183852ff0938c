"""Utilities for owner-scoped authentication."""

from __future__ import annotations

import os
from typing import TypedDict, cast

import jwt
from fastapi import HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

__all__ = [
    "OwnerTokenConfigurationError",
    "OwnerTokenPayload",
    "OwnerTokenValidationError",
    "decode_owner_token",
    "get_owner_id",
    "owner_tokens_enabled",
]

OWNER_HEADER = "X-Owner-Id"


class OwnerTokenConfigurationError(RuntimeError):
    """Raised when owner token configuration is invalid."""


class OwnerTokenValidationError(ValueError):
    """Raised when the provided owner token cannot be validated."""


class _OwnerTokenRequiredClaims(TypedDict):
    owner_id: str


class OwnerTokenPayload(_OwnerTokenRequiredClaims, total=False):
    """Decoded JWT payload for owner-scoped authentication."""

    aud: str | list[str]
    exp: int
    iat: int
    iss: str
    sub: str
    type: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    """Fetch an environment variable with optional requirement enforcement.

    Args:
        name: Name of the environment variable to read.
        required: Whether to raise when the variable is missing or empty.
        default: Value to use when ``required`` is ``False`` and the variable is
            undefined.

    Returns:
        str: Stripped environment variable value or provided default.

    Raises:
        OwnerTokenConfigurationError: If ``required`` is ``True`` and the
            variable is missing or blank.
    """

    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise OwnerTokenConfigurationError(
            f"Environment variable '{name}' must be set for owner token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def owner_tokens_enabled() -> bool:
    """Return whether bearer tokens are required (``OWNER_TOKEN_SECRET`` set)."""

    return bool(os.getenv("OWNER_TOKEN_SECRET", "").strip())


def decode_owner_token(token: str) -> OwnerTokenPayload:
    """Decode and validate an owner access token.

    Args:
        token: Encoded JWT token string from the ``Authorization`` header.

    Returns:
        OwnerTokenPayload: Parsed payload containing the owner identifier.

    Raises:
        OwnerTokenConfigurationError: If mandatory environment configuration is missing.
        OwnerTokenValidationError: If token signature, claims, or expiry are invalid.
    """

    secret_key = _get_env("OWNER_TOKEN_SECRET")
    audience = _get_env("OWNER_TOKEN_AUDIENCE")
    issuer = _get_env("OWNER_TOKEN_ISSUER")
    algorithm = _get_env("OWNER_TOKEN_ALGORITHM", required=False, default="HS256")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise OwnerTokenValidationError("Owner token has expired.") from exc
    except InvalidTokenError as exc:
        raise OwnerTokenValidationError("Owner token is invalid.") from exc

    owner_id = payload.get("owner_id")
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise OwnerTokenValidationError("Owner token payload must include 'owner_id'.")
    type_claim = payload.get("type")
    if type_claim and type_claim != "access":
        raise OwnerTokenValidationError("Owner token must be an access token.")

    return cast(OwnerTokenPayload, payload)


def get_owner_id(request: Request) -> str:
    """Resolve the calling owner for a request.

    With ``OWNER_TOKEN_SECRET`` configured a bearer token is mandatory. Without
    it the service runs in development mode and trusts the ``X-Owner-Id``
    header.

    Raises:
        HTTPException: With status ``401`` when credentials are missing or
            invalid, or ``500`` if the token configuration is incorrect.
    """

    if not owner_tokens_enabled():
        owner_id = (request.headers.get(OWNER_HEADER) or "").strip()
        if not owner_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Missing {OWNER_HEADER} header.",
            )
        return owner_id

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )

    try:
        return decode_owner_token(credentials)["owner_id"]
    except OwnerTokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except OwnerTokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
