"""
Caller identity from Bearer JWTs.

Tokens are issued by the external identity provider. This module only
verifies them (HS256 shared secret by default) and exposes the caller's
stable identity id and optional role claim.

Configuration (environment variables):
- AUTH_JWT_SECRET:    Shared verification secret (required for auth routes)
- AUTH_JWT_ALGORITHM: Signature algorithm (default: "HS256")
- AUTH_JWT_AUDIENCE:  Expected "aud" claim, if any

SECURITY: identity always comes from the verified token, never from the
request body or query parameters.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from property_invites.platform.errors import AuthenticationError

logger = logging.getLogger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Caller:
    """Verified caller identity."""
    user_id: str
    role: Optional[str] = None


class TokenVerificationError(Exception):
    """Raised when a bearer token cannot be verified."""
    pass


def _get_secret() -> str:
    secret = os.getenv("AUTH_JWT_SECRET")
    if not secret:
        raise TokenVerificationError("AUTH_JWT_SECRET is not configured")
    return secret


def decode_caller(token: str) -> Caller:
    """Verify a JWT and build the Caller from its claims."""
    algorithm = os.getenv("AUTH_JWT_ALGORITHM", "HS256")
    audience = os.getenv("AUTH_JWT_AUDIENCE") or None

    try:
        payload = jwt.decode(
            token,
            _get_secret(),
            algorithms=[algorithm],
            audience=audience,
            options={"require": ["sub", "exp"], "verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError:
        raise TokenVerificationError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenVerificationError(f"Invalid token: {str(e)}")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise TokenVerificationError("Token subject is missing")
    return Caller(user_id=subject, role=payload.get("role"))


def get_optional_caller(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[Caller]:
    """
    Resolve the caller, or None when no valid token was presented.

    Invalid tokens are treated the same as missing ones.
    """
    if credentials is None or not credentials.credentials:
        return None
    try:
        return decode_caller(credentials.credentials)
    except TokenVerificationError as e:
        logger.info("Bearer token rejected", extra={"reason": str(e)})
        return None


def require_caller(caller: Optional[Caller] = Depends(get_optional_caller)) -> Caller:
    """Resolve the caller or fail with 401."""
    if caller is None:
        raise AuthenticationError()
    return caller
