"""FastAPI dependencies for authentication."""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from recoup.auth.utils import cron_secret_matches, decode_access_token

# HTTP Bearer token security scheme
security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    user_id: str
    organization_id: str


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """
    Dependency to get the current authenticated user and their organization.

    Raises 401 if not authenticated or token is invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("org_id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return CurrentUser(user_id=payload.get("sub"), organization_id=payload["org_id"])


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Optional[CurrentUser]:
    """
    Dependency to optionally get authenticated user.

    Returns None if not authenticated (doesn't raise).
    """
    if not credentials:
        return None

    try:
        return await get_current_user(credentials)
    except HTTPException:
        return None


async def is_cron_request(x_cron_secret: Optional[str] = Header(default=None)) -> bool:
    """True when the request carries the shared cron secret."""
    return cron_secret_matches(x_cron_secret)


async def verify_cron_secret(x_cron_secret: Optional[str] = Header(default=None)) -> None:
    """Dependency for endpoints only the scheduler may call."""
    if not cron_secret_matches(x_cron_secret):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid cron secret",
        )
