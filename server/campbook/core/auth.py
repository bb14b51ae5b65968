"""Bearer token verification for identity-provider (Supabase) issued JWTs."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import jwt

from .config import settings
from .exceptions import AuthenticationError

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "y", "t"}
_FALSE_VALUES = {"0", "false", "no", "n", "f", ""}


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as seen by the booking core."""

    user_id: str
    email: Optional[str] = None
    is_owner: bool = False


def coerce_bool(value: Any) -> bool:
    """
    Normalize the loosely typed owner flag stored with user records.

    Accepts bools, numbers and strings such as "1", "0", "true".
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
    logger.warning("Unrecognized owner flag value", extra={"value": repr(value)})
    return False


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    """Build a Principal from verified token claims."""
    user_id = claims.get("sub")
    if not user_id:
        raise AuthenticationError(detail="Token has no subject")

    user_metadata = claims.get("user_metadata") or {}
    app_metadata = claims.get("app_metadata") or {}
    owner_flag = app_metadata.get("isowner", user_metadata.get("isowner"))

    return Principal(
        user_id=str(user_id),
        email=claims.get("email"),
        is_owner=coerce_bool(owner_flag),
    )


def decode_token(token: str) -> Principal:
    """
    Verify a bearer token and resolve the caller.

    Raises:
        AuthenticationError: If the token is malformed, expired or not for this audience
    """
    try:
        claims = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError(detail="Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected bearer token", extra={"error": str(exc)})
        raise AuthenticationError(detail="Invalid authentication token") from exc

    return principal_from_claims(claims)
