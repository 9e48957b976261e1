"""
accounts.py — Typed access to Account records and Session Markers.

Thin repository over the KV store so no other module builds account keys
or (de)serialises Account payloads by hand. Store errors propagate as
StoreUnavailable.

Two marker families exist:
  SessionMarkerKey(account_id)  — live-session switch for the account;
                                  deleting it revokes every token at once
  LegacySessionKey(token)       — proof that one specific legacy token was
                                  really issued (legacy tokens are unsigned)
"""

from typing import Optional

from safemessage.core.keys import AccountKey, LegacySessionKey, SessionMarkerKey
from safemessage.core.kv import KVStore
from safemessage.models.account import Account, SessionMarker


class AccountRepository:
    def __init__(self, store: KVStore):
        self._store = store

    async def get(self, account_id: str) -> Optional[Account]:
        raw = await self._store.get(AccountKey(account_id))
        if raw is None:
            return None
        return Account.model_validate(raw)

    async def save(self, account: Account) -> None:
        await self._store.set(AccountKey(account.account_id), account.model_dump(mode="json"))

    async def get_session_marker(self, account_id: str) -> Optional[SessionMarker]:
        raw = await self._store.get(SessionMarkerKey(account_id))
        if raw is None:
            return None
        return SessionMarker.model_validate(raw)

    async def put_session_marker(self, marker: SessionMarker, ttl: int) -> None:
        await self._store.set(
            SessionMarkerKey(marker.account_id), marker.model_dump(mode="json"), ttl=ttl
        )

    async def delete_session_marker(self, account_id: str) -> None:
        await self._store.delete(SessionMarkerKey(account_id))

    async def get_legacy_session(self, token: str) -> Optional[SessionMarker]:
        raw = await self._store.get(LegacySessionKey(token))
        if raw is None:
            return None
        return SessionMarker.model_validate(raw)

    async def put_legacy_session(self, token: str, marker: SessionMarker, ttl: int) -> None:
        await self._store.set(LegacySessionKey(token), marker.model_dump(mode="json"), ttl=ttl)
