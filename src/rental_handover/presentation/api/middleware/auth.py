"""
Authentication middleware for the rental handover API.

Callers are identified by a bearer JWT whose ``sub`` claim is the user ID
issued by the identity provider. The caller's role on a booking is never
read from the token; it is resolved against the booking itself.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from ..config import get_settings


# Security scheme for bearer token authentication
security = HTTPBearer()

JWT_EXPIRATION_HOURS = 8


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


@dataclass(frozen=True)
class CallerIdentity:
    """Authenticated caller of a request."""

    user_id: str
    is_admin: bool = False


def decode_access_token(token: str) -> CallerIdentity:
    """
    Decode a bearer token into the caller identity.

    Raises:
        AuthenticationError: if the token is malformed, expired or has no subject
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError(f"Invalid authentication token: {str(e)}") from e

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token: missing subject")

    exp = payload.get("exp")
    if exp and datetime.fromtimestamp(exp, timezone.utc) < datetime.now(timezone.utc):
        raise AuthenticationError("Token has expired")

    return CallerIdentity(user_id=str(user_id), is_admin=payload.get("role") == settings.admin_role)


async def get_current_caller(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CallerIdentity:
    """
    FastAPI dependency to get the authenticated caller.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    if not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_required(caller: CallerIdentity = Depends(get_current_caller)) -> CallerIdentity:
    """Dependency for endpoints that require an authenticated caller."""
    return caller


async def get_admin_caller(
    caller: CallerIdentity = Depends(get_current_caller)
) -> CallerIdentity:
    """
    Dependency for endpoints that require admin privileges.

    Raises:
        HTTPException: 403 if the caller is not an admin
    """
    if not caller.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )

    return caller


def admin_required(caller: CallerIdentity = Depends(get_admin_caller)) -> CallerIdentity:
    """Dependency for admin-only endpoints."""
    return caller


def create_access_token(user_id: str, role: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token for a user.

    Args:
        user_id: The identity-provider user ID
        role: Optional role claim, e.g. ``admin``
        expires_delta: Optional custom expiration time

    Returns:
        str: The encoded JWT token
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=JWT_EXPIRATION_HOURS))

    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": now,
        "type": "access_token"
    }
    if role:
        to_encode["role"] = role

    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
