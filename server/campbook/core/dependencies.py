"""FastAPI dependencies for database, authentication, and collaborators."""

from typing import Optional

from fastapi import Depends, Header

from ..services.payment_provider import PaymentProvider, get_payment_provider
from .auth import Principal, decode_token
from .clock import Clock, utcnow
from .database import get_db
from .exceptions import AuthenticationError, ValidationError


async def get_current_principal(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Principal:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Principal: Caller resolved from the validated token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError as exc:
        raise AuthenticationError(detail="Invalid authorization header format") from exc

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    return decode_token(token)


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate the optional idempotency key header.

    Raises:
        ValidationError: If the key is empty or longer than 255 characters
    """
    if idempotency_key is None:
        return None

    idempotency_key = idempotency_key.strip()
    if len(idempotency_key) < 1 or len(idempotency_key) > 255:
        raise ValidationError(detail="Idempotency key must be between 1 and 255 characters")

    return idempotency_key


def get_provider() -> PaymentProvider:
    """Payment provider dependency, overridden in tests."""
    return get_payment_provider()


def get_clock() -> Clock:
    """Time source dependency, overridden in tests."""
    return utcnow


RequiredAuth = Depends(get_current_principal)
DatabaseSession = Depends(get_db)
IdempotencyKey = Depends(get_idempotency_key)
ProviderDependency = Depends(get_provider)
ClockDependency = Depends(get_clock)
