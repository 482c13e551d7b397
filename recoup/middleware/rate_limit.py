"""HTTP rate limiting with slowapi.

Authenticated requests are limited per organization, so several users of
one organization share a budget. Anonymous and cron requests fall back to
the client address.
"""
from fastapi import Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from recoup.auth.utils import decode_access_token
from recoup.config import settings


def rate_limit_key(request: Request) -> str:
    """`org:<id>` for a valid bearer token, else the remote address."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        payload = decode_access_token(token)
        if payload and payload.get("org_id"):
            return f"org:{payload['org_id']}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    enabled=settings.RATE_LIMIT_ENABLED,
    storage_uri=None,  # In-memory storage
)


def setup_rate_limiting(app):
    """Configure rate limiting for the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
