"""
JWT helpers.

Access tokens are issued by the identity service; this API only verifies them.
`create_access_token` exists for tooling and tests. Quote tokens are short-lived
JWTs that bind a promotion to the exact quote it was applied to.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from rentals.core.config import get_settings

settings = get_settings()
bearer = HTTPBearer(auto_error=False)

QUOTE_TOKEN_TYPE = "quote"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def get_current_user_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> int:
    """Resolve the caller's user id from the Bearer token, or 401."""
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not creds:
        raise unauthorized
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise unauthorized
    if payload.get("type", "access") != "access":
        raise unauthorized
    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise unauthorized


def create_quote_token(claims: dict[str, Any]) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.QUOTE_TOKEN_TTL_MINUTES)
    payload = {**claims, "type": QUOTE_TOKEN_TYPE, "exp": expire}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_quote_token(token: str) -> Optional[dict[str, Any]]:
    """Return the quote claims, or None if the token is invalid or expired."""
    try:
        payload = decode_token(token)
    except JWTError:
        return None
    if payload.get("type") != QUOTE_TOKEN_TYPE:
        return None
    return payload
