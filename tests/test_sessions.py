"""
test_sessions.py — Session issuance and revocation.
"""

import pytest

from safemessage.core.errors import Expired, NoValidCredential
from safemessage.core.keys import AccountKey, LegacySessionKey, SessionMarkerKey
from safemessage.core.tokens import encode_legacy_token
from safemessage.services.sessions import ProviderProfile


async def test_first_login_creates_free_account(sessions, store):
    issued = await sessions.open_session(ProviderProfile(account_id="acct-1", email="a@example.com"))
    assert issued.created
    assert issued.account.free_uses_remaining == 5
    assert issued.claims.account_id == "acct-1"
    assert (await store.get(AccountKey("acct-1")))["email"] == "a@example.com"
    assert await store.get(SessionMarkerKey("acct-1")) is not None


async def test_relogin_keeps_usage_and_refreshes_profile(sessions, store, clock):
    await sessions.open_session(ProviderProfile(account_id="acct-1", email="a@example.com"))
    raw = await store.get(AccountKey("acct-1"))
    await store.set(AccountKey("acct-1"), {**raw, "free_uses_remaining": 1, "total_scans": 4})

    clock.advance(3600)
    issued = await sessions.open_session(ProviderProfile(account_id="acct-1", display_name="Ada"))

    assert not issued.created
    assert issued.account.free_uses_remaining == 1
    assert issued.account.total_scans == 4
    assert issued.account.email == "a@example.com"
    assert issued.account.display_name == "Ada"


async def test_token_verifies_with_codec(sessions, codec):
    issued = await sessions.open_session(ProviderProfile(account_id="acct-1"))
    assert codec.verify(issued.token).account_id == "acct-1"


async def test_marker_lives_as_long_as_the_token(sessions, store, clock, codec):
    await sessions.open_session(ProviderProfile(account_id="acct-1"))
    clock.advance(codec.lifetime_seconds - 1)
    assert await store.get(SessionMarkerKey("acct-1")) is not None
    clock.advance(1)
    assert await store.get(SessionMarkerKey("acct-1")) is None


async def test_close_session_removes_marker_only(sessions, store):
    await sessions.open_session(ProviderProfile(account_id="acct-1"))
    await sessions.close_session("acct-1")
    assert await store.get(SessionMarkerKey("acct-1")) is None
    assert await store.get(AccountKey("acct-1")) is not None


async def test_close_unknown_session_is_harmless(sessions):
    await sessions.close_session("never-signed-in")


class TestLegacyImport:
    async def test_import_writes_token_scoped_marker(self, sessions, store, clock):
        await sessions.open_session(ProviderProfile(account_id="g-1"))
        token = encode_legacy_token("g-1", None, int((clock.now + 600) * 1000))

        marker = await sessions.import_legacy_session(token)

        assert marker.scheme == "legacy"
        assert (await store.get(LegacySessionKey(token)))["account_id"] == "g-1"
        clock.advance(600)
        assert await store.get(LegacySessionKey(token)) is None

    async def test_import_restores_missing_account_marker(self, sessions, store, clock):
        await sessions.open_session(ProviderProfile(account_id="g-1"))
        await sessions.close_session("g-1")
        token = encode_legacy_token("g-1", None, int((clock.now + 600) * 1000))
        await sessions.import_legacy_session(token)
        assert await store.get(SessionMarkerKey("g-1")) is not None

    async def test_current_tokens_are_not_imported(self, sessions):
        issued = await sessions.open_session(ProviderProfile(account_id="g-1"))
        with pytest.raises(NoValidCredential):
            await sessions.import_legacy_session(issued.token)

    async def test_unknown_account_rejected(self, sessions, clock):
        token = encode_legacy_token("ghost", None, int((clock.now + 600) * 1000))
        with pytest.raises(NoValidCredential):
            await sessions.import_legacy_session(token)

    async def test_expired_token_rejected(self, sessions, clock):
        await sessions.open_session(ProviderProfile(account_id="g-1"))
        token = encode_legacy_token("g-1", None, int((clock.now - 1) * 1000))
        with pytest.raises(Expired):
            await sessions.import_legacy_session(token)
