"""
test_rate_limiter.py — Fixed-window limits per (tier, identity).
"""

import pytest

from safemessage.core.keys import RateWindowKey
from safemessage.models.identity import Tier
from safemessage.services.rate_limiter import RateLimiter, TierLimit, default_tier_limits

ANON = "anonymous:dev-abc123"


@pytest.fixture()
def limiter(store, clock):
    return RateLimiter(store, clock=clock)


def test_default_limits():
    limits = default_tier_limits()
    assert limits[Tier.ANONYMOUS] == TierLimit(5, 60)
    assert limits[Tier.FREE] == TierLimit(10, 60)
    assert limits[Tier.PREMIUM] == TierLimit(100, 60)


async def test_allows_exactly_the_limit(limiter):
    results = [await limiter.check_and_increment(ANON, Tier.ANONYMOUS) for _ in range(6)]
    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert [r.remaining for r in results] == [4, 3, 2, 1, 0, 0]


async def test_next_window_starts_fresh(limiter, clock):
    for _ in range(6):
        await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    clock.advance(60)
    result = await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    assert result.allowed
    assert result.remaining == 4


async def test_retry_after_counts_to_window_end(limiter, clock):
    base = clock.now
    for offset in (0, 1, 2, 3, 4):
        clock.now = base + offset
        assert (await limiter.check_and_increment(ANON, Tier.ANONYMOUS)).allowed

    clock.now = base + 10
    denied = await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    assert not denied.allowed
    assert denied.retry_after == 50
    assert denied.reset_at == int(base) + 60

    clock.now = base + 61
    assert (await limiter.check_and_increment(ANON, Tier.ANONYMOUS)).allowed


async def test_retry_after_is_at_least_one(limiter, clock):
    for _ in range(5):
        await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    clock.advance(59.9)
    denied = await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    assert denied.retry_after == 1


async def test_tiers_count_separately(limiter):
    for _ in range(5):
        await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    assert (await limiter.check_and_increment(ANON, Tier.FREE)).allowed


async def test_identities_count_separately(limiter):
    for _ in range(5):
        await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    assert (await limiter.check_and_increment("anonymous:other-device", Tier.ANONYMOUS)).allowed


async def test_premium_has_higher_limit(limiter):
    identity = "authenticated:acct-1"
    results = [await limiter.check_and_increment(identity, Tier.PREMIUM) for _ in range(101)]
    assert sum(r.allowed for r in results) == 100


async def test_window_counter_expires_after_two_windows(limiter, store, clock):
    await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    key = RateWindowKey(Tier.ANONYMOUS, ANON, int(clock.now))
    assert await store.get(key) == 1
    clock.advance(119)
    assert await store.get(key) == 1
    clock.advance(1)
    assert await store.get(key) is None


async def test_denied_request_does_not_increment(limiter, store, clock):
    for _ in range(8):
        await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    assert await store.get(RateWindowKey(Tier.ANONYMOUS, ANON, int(clock.now))) == 5


async def test_custom_limits(store, clock):
    limiter = RateLimiter(store, limits={Tier.ANONYMOUS: TierLimit(2, 10)}, clock=clock)
    results = [await limiter.check_and_increment(ANON, Tier.ANONYMOUS) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, False]
    assert results[-1].reset_at == int(clock.now) + 10


async def test_headers(limiter, clock):
    result = await limiter.check_and_increment(ANON, Tier.ANONYMOUS)
    assert result.headers() == {
        "X-RateLimit-Limit": "5",
        "X-RateLimit-Remaining": "4",
        "X-RateLimit-Reset": str(int(clock.now) + 60),
    }
