"""
Provider rate limiting.

Sliding-window limiter passed explicitly into the outreach executor and the
sync adapters. Each channel has its own quota and window; usage is tracked
per key (organization id). The clock is injectable so tests can move time
deterministically.
"""

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Deque, Dict, Optional, Tuple

from recoup.engines.config import AREngineConfig
from recoup.models.base import utcnow

logger = logging.getLogger(__name__)

DAY_SECONDS = 24 * 60 * 60

# QuickBooks Online allows 500 requests per minute per realm
QUICKBOOKS_REQUESTS_PER_MINUTE = 500


@dataclass(frozen=True)
class Quota:
    limit: int
    window_seconds: int


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime


class ProviderRateLimiter:
    """Sliding-window limiter keyed by (channel, key)."""

    def __init__(self, quotas: Dict[str, Quota], clock: Callable[[], datetime] = utcnow):
        self.quotas = dict(quotas)
        self.clock = clock
        self._windows: Dict[Tuple[str, str], Deque[datetime]] = defaultdict(deque)

    def _prune(self, channel: str, key: str, now: datetime) -> Tuple[Quota, Deque[datetime]]:
        quota = self.quotas[channel]
        window = self._windows[(channel, key)]
        cutoff = now - timedelta(seconds=quota.window_seconds)
        while window and window[0] <= cutoff:
            window.popleft()
        return quota, window

    def acquire(self, channel: str, key: str) -> RateLimitResult:
        """Consume one slot if available. Channels without a quota are unlimited."""
        now = self.clock()
        if channel not in self.quotas:
            return RateLimitResult(allowed=True, remaining=-1, limit=-1, reset_at=now)

        quota, window = self._prune(channel, key, now)
        if len(window) < quota.limit:
            window.append(now)
            return RateLimitResult(
                allowed=True,
                remaining=quota.limit - len(window),
                limit=quota.limit,
                reset_at=window[0] + timedelta(seconds=quota.window_seconds),
            )

        reset_at = window[0] + timedelta(seconds=quota.window_seconds) if window else now
        logger.warning(f"Rate limit reached for {channel} ({key}); resets at {reset_at.isoformat()}")
        return RateLimitResult(allowed=False, remaining=0, limit=quota.limit, reset_at=reset_at)

    def remaining(self, channel: str, key: str) -> Optional[int]:
        if channel not in self.quotas:
            return None
        quota, window = self._prune(channel, key, self.clock())
        return max(0, quota.limit - len(window))

    def reset(self, channel: Optional[str] = None, key: Optional[str] = None) -> None:
        for window_key in list(self._windows):
            if (channel is None or window_key[0] == channel) and (key is None or window_key[1] == key):
                del self._windows[window_key]


def build_provider_rate_limiter(
    config: AREngineConfig,
    clock: Callable[[], datetime] = utcnow,
) -> ProviderRateLimiter:
    return ProviderRateLimiter(
        {
            "email": Quota(limit=config.max_emails_per_day, window_seconds=DAY_SECONDS),
            "sms": Quota(limit=config.max_sms_per_day, window_seconds=DAY_SECONDS),
            "quickbooks": Quota(limit=QUICKBOOKS_REQUESTS_PER_MINUTE, window_seconds=60),
        },
        clock=clock,
    )
