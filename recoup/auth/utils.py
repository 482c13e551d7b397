"""Authentication utilities - JWT handling.

Tokens are issued by the account service; the AR engine only verifies
them and reads the organization they were issued for.
"""
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from recoup.config import settings


def create_access_token(user_id: str, organization_id: str, expires_minutes: Optional[int] = None) -> str:
    """Create a JWT access token scoped to one organization."""
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {
        "sub": user_id,
        "org_id": organization_id,
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT access token.

    Returns the payload if valid, None otherwise.
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        return None


def cron_secret_matches(provided: Optional[str]) -> bool:
    """Constant-time comparison against the configured cron secret."""
    if not settings.CRON_SECRET or not provided:
        return False
    return hmac.compare_digest(provided, settings.CRON_SECRET)
