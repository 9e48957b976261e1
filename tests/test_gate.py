"""
test_gate.py — Admission ordering and store-failure policy.
"""

import pytest

from conftest import FailingStore
from safemessage.core.keys import AccountKey, AnonymousUsageKey
from safemessage.services.gate import (
    Allow,
    QuotaExceeded,
    RateLimited,
    Unauthenticated,
    Unavailable,
    build_gate,
)
from safemessage.services.identity import RequestCredentials

DEVICE = RequestCredentials(fingerprint="dev-abc123")


@pytest.fixture()
def gate(store, clock):
    return build_gate(store, clock)


async def test_anonymous_allowed_with_remaining(gate):
    verdict = await gate.admit(DEVICE)
    assert isinstance(verdict, Allow)
    assert verdict.remaining_uses == 4
    assert verdict.rate.remaining == 4


async def test_quota_exhausted_across_windows(gate, clock):
    for _ in range(5):
        assert isinstance(await gate.admit(DEVICE), Allow)
    clock.advance(60)
    verdict = await gate.admit(DEVICE)
    assert isinstance(verdict, QuotaExceeded)
    assert verdict.reason == "quota_exceeded"


async def test_rate_limited_request_spends_no_quota(gate, store, clock, sign_in):
    session = await sign_in("acct-1")
    raw = await store.get(AccountKey("acct-1"))
    await store.set(AccountKey("acct-1"), {**raw, "free_uses_remaining": 100})
    creds = RequestCredentials(authorization=f"Bearer {session.token}")

    for _ in range(10):
        assert isinstance(await gate.admit(creds), Allow)
    verdict = await gate.admit(creds)

    assert isinstance(verdict, RateLimited)
    assert verdict.retry_after == 60
    assert "60 seconds" in verdict.hint
    assert (await store.get(AccountKey("acct-1")))["free_uses_remaining"] == 90


async def test_anonymous_rate_limit_hits_before_quota(gate, store):
    for _ in range(5):
        await gate.admit(DEVICE)
    verdict = await gate.admit(DEVICE)
    assert isinstance(verdict, RateLimited)
    assert (await store.get(AnonymousUsageKey("anonymous:dev-abc123")))["used"] == 5


async def test_premium_is_unlimited(gate, store, sign_in):
    session = await sign_in("acct-1")
    raw = await store.get(AccountKey("acct-1"))
    await store.set(AccountKey("acct-1"), {**raw, "is_premium": True})
    verdict = await gate.admit(RequestCredentials(authorization=f"Bearer {session.token}"))
    assert isinstance(verdict, Allow)
    assert verdict.remaining_uses is None
    assert verdict.rate.limit == 100


async def test_require_auth_rejects_anonymous_without_side_effects(gate, store):
    verdict = await gate.admit(DEVICE, require_auth=True)
    assert isinstance(verdict, Unauthenticated)
    assert len(store) == 0


async def test_rate_store_down_fails_open(clock):
    gate = build_gate(FailingStore(clock, ["ratelimit"]), clock)
    verdict = await gate.admit(DEVICE)
    assert isinstance(verdict, Allow)
    assert verdict.rate is None
    assert verdict.remaining_uses == 4


async def test_usage_store_down_fails_closed(clock):
    gate = build_gate(FailingStore(clock, ["usage"]), clock)
    verdict = await gate.admit(DEVICE)
    assert isinstance(verdict, Unavailable)
    assert verdict.retry_after == 5


async def test_account_deleted_mid_request_is_unauthenticated(gate, store, sign_in, monkeypatch):
    session = await sign_in("acct-1")
    resolve = gate.resolver.resolve

    async def resolve_then_delete(credentials):
        resolved = await resolve(credentials)
        await store.delete(AccountKey("acct-1"))
        return resolved

    monkeypatch.setattr(gate.resolver, "resolve", resolve_then_delete)
    verdict = await gate.admit(RequestCredentials(authorization=f"Bearer {session.token}"))
    assert isinstance(verdict, Unauthenticated)
