"""
rate_limiter.py — Fixed-window request limiter per (tier, identity).

Window start = floor(now / W) * W. One counter per window, stored under
RateWindowKey with a TTL of 2 * W so stale windows expire on their own.

Default limits per window of 60s:
    anonymous  5
    free      10
    premium  100

Known compromise: a caller can spend a full allowance at the end of one
window and another at the start of the next, i.e. up to 2x the limit
across a window edge. That is acceptable for abuse deterrence and keeps
the counter a single integer. Counts are read-modify-write (no atomic
increment), so bursts of concurrent requests may under-count.
"""

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from safemessage.core.config import settings
from safemessage.core.keys import RateWindowKey
from safemessage.core.kv import KVStore
from safemessage.models.identity import Tier


@dataclass(frozen=True)
class TierLimit:
    limit: int
    window_seconds: int


def default_tier_limits() -> dict[Tier, TierLimit]:
    window = settings.rate_window_seconds
    return {
        Tier.ANONYMOUS: TierLimit(settings.rate_limit_anonymous, window),
        Tier.FREE: TierLimit(settings.rate_limit_free, window),
        Tier.PREMIUM: TierLimit(settings.rate_limit_premium, window),
    }


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # unix seconds, start of the next window
    retry_after: int  # seconds until reset_at, at least 1

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimiter:
    def __init__(
        self,
        store: KVStore,
        limits: Optional[dict[Tier, TierLimit]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self.limits = limits or default_tier_limits()
        self._clock = clock

    async def check_and_increment(self, identity: str, tier: Tier) -> RateLimitResult:
        """Count this request against the current window if there is room."""
        rule = self.limits[tier]
        now = self._clock()
        window_start = int(now // rule.window_seconds) * rule.window_seconds
        reset_at = window_start + rule.window_seconds
        key = RateWindowKey(tier, identity, window_start)

        current = await self._store.get(key) or 0
        allowed = current < rule.limit
        if allowed:
            current += 1
            await self._store.set(key, current, ttl=rule.window_seconds * 2)

        return RateLimitResult(
            allowed=allowed,
            limit=rule.limit,
            remaining=max(0, rule.limit - current),
            reset_at=reset_at,
            retry_after=max(1, math.ceil(reset_at - now)),
        )
