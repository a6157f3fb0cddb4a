"""
LMS Assessment Engine - Security Module
Verification of bearer tokens issued by the identity service
"""
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from lms_assessment.core.config import settings


def create_access_token(subject: str | int, expires_delta: timedelta | None = None) -> str:
    """Mint an access token in the identity service's format (tooling and tests)."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(subject), "exp": expire, "iat": now, "type": "access"}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any] | None:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def verify_token(token: str, token_type: str = "access") -> str | None:
    """Return the token's subject (a user id), or None if the token is unusable."""
    payload = decode_token(token)
    if payload is None or payload.get("type") != token_type:
        return None
    return payload.get("sub")
