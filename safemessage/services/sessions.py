"""
sessions.py — Session issuance and revocation.

The OAuth callback (an external collaborator) verifies the provider's ID
token and hands the profile to open_session(). We create or refresh the
Account, sign a session token, and write the Session Marker that every
later request checks. close_session() deletes the marker, which revokes
all outstanding tokens for the account at once.

import_legacy_session() registers a token minted by the pre-JWT callback
so it keeps working until it expires. Legacy tokens carry no signature,
so only tokens registered here are ever honoured.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from safemessage.core.config import settings
from safemessage.core.errors import NoValidCredential
from safemessage.core.kv import KVStore
from safemessage.core.tokens import TokenClaims, TokenCodec
from safemessage.models.account import Account, SessionMarker
from safemessage.services.accounts import AccountRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderProfile:
    account_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


@dataclass(frozen=True)
class IssuedSession:
    token: str
    claims: TokenClaims
    account: Account
    created: bool


class SessionService:
    def __init__(
        self,
        store: KVStore,
        codec: TokenCodec,
        free_limit: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._accounts = AccountRepository(store)
        self._codec = codec
        self.free_limit = settings.free_limit if free_limit is None else free_limit
        self._clock = clock

    async def open_session(self, profile: ProviderProfile) -> IssuedSession:
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        account = await self._accounts.get(profile.account_id)
        created = account is None
        if account is None:
            account = Account(
                account_id=profile.account_id,
                email=profile.email,
                display_name=profile.display_name,
                avatar_url=profile.avatar_url,
                free_uses_remaining=self.free_limit,
                created_at=now,
                last_active_at=now,
            )
        else:
            account = account.model_copy(update={
                "email": profile.email or account.email,
                "display_name": profile.display_name or account.display_name,
                "avatar_url": profile.avatar_url or account.avatar_url,
                "last_active_at": now,
            })
        await self._accounts.save(account)

        token, claims = self._codec.issue(account.account_id, account.email)
        marker = SessionMarker(
            account_id=account.account_id,
            created_at=now,
            note=f"login at {now.isoformat()}",
        )
        await self._accounts.put_session_marker(marker, ttl=self._codec.lifetime_seconds)

        logger.info("Opened session for account %s (new=%s)", account.account_id, created)
        return IssuedSession(token=token, claims=claims, account=account, created=created)

    async def close_session(self, account_id: str) -> None:
        await self._accounts.delete_session_marker(account_id)
        logger.info("Closed sessions for account %s", account_id)

    async def import_legacy_session(self, token: str) -> SessionMarker:
        """
        Honour one legacy token for the rest of its lifetime.

        Raises NoValidCredential (or Expired) if the token is not a live
        legacy token for an existing account.
        """
        claims = self._codec.verify(token)
        if not claims.legacy:
            raise NoValidCredential("not a legacy token")
        if await self._accounts.get(claims.account_id) is None:
            raise NoValidCredential(f"account {claims.account_id} does not exist")

        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        ttl = max(1, int(claims.expires_at - self._clock()))
        marker = SessionMarker(
            account_id=claims.account_id,
            scheme="legacy",
            created_at=now,
            note="imported legacy session",
        )
        await self._accounts.put_legacy_session(token, marker, ttl=ttl)
        if await self._accounts.get_session_marker(claims.account_id) is None:
            await self._accounts.put_session_marker(
                SessionMarker(account_id=claims.account_id, created_at=now, note="legacy import"),
                ttl=self._codec.lifetime_seconds,
            )
        logger.info("Imported legacy session for account %s", claims.account_id)
        return marker
