"""
identity.py — Credential Resolver.

Turns whatever an inbound request carries into a ResolvedIdentity:

  1. Bearer token — Authorization header, then session_token cookie, then
     session_token query param. Only the first one found is considered.
     It must verify (current or legacy scheme), a Session Marker must
     still exist for the account, and the Account record must exist.
     Legacy tokens are unsigned, so they additionally need a legacy
     marker stored under that exact token (see
     SessionService.import_legacy_session); knowing an account id is not
     enough to forge one.
  2. Device fingerprint from the JSON body, if it passes a length check.
     The check only filters obvious junk; fingerprints are client-chosen
     and spoofable, so they dedupe honest devices and nothing more.
  3. The long-lived anonymous cookie id, minted here when absent.

Every failure in step 1 silently downgrades to steps 2-3. The reason
(bad signature, expiry, revoked session, store outage) is logged at
debug/warning level and never returned to the caller.

The resolver performs no store writes. Minting a cookie id only returns
it in ResolvedIdentity.issued_cookie; two concurrent first visits simply
mint two ids and the browser keeps whichever Set-Cookie lands last.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from safemessage.core.config import settings
from safemessage.core.errors import NoValidCredential, StoreUnavailable
from safemessage.core.kv import KVStore
from safemessage.core.tokens import TokenCodec
from safemessage.models.identity import (
    IdentityKind,
    IdentitySource,
    ResolvedIdentity,
    Tier,
    anonymous_identity,
    authenticated_identity,
)
from safemessage.services.accounts import AccountRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestCredentials:
    """The identity-bearing parts of a request, detached from the HTTP framework."""

    authorization: Optional[str] = None
    session_cookie: Optional[str] = None
    session_query: Optional[str] = None
    fingerprint: Optional[str] = None
    anonymous_cookie: Optional[str] = None

    def bearer_token(self) -> Optional[str]:
        if self.authorization and self.authorization.startswith("Bearer "):
            token = self.authorization[len("Bearer "):].strip()
            if token:
                return token
        return self.session_cookie or self.session_query or None


class CredentialResolver:
    def __init__(
        self,
        store: KVStore,
        codec: TokenCodec,
        fingerprint_min_length: int | None = None,
        fingerprint_max_length: int | None = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self._accounts = AccountRepository(store)
        self._codec = codec
        self._fp_min = (
            settings.fingerprint_min_length if fingerprint_min_length is None else fingerprint_min_length
        )
        self._fp_max = (
            settings.fingerprint_max_length if fingerprint_max_length is None else fingerprint_max_length
        )
        self._new_id = id_factory

    async def resolve(self, credentials: RequestCredentials) -> ResolvedIdentity:
        resolved = await self._authenticate(credentials)
        if resolved is not None:
            return resolved
        return self._anonymous(credentials)

    async def authenticate(self, credentials: RequestCredentials) -> Optional[ResolvedIdentity]:
        """Step 1 only: the authenticated identity, or None."""
        return await self._authenticate(credentials)

    # ── Step 1 ────────────────────────────────────────────────────────────────

    async def _authenticate(self, credentials: RequestCredentials) -> Optional[ResolvedIdentity]:
        token = credentials.bearer_token()
        if not token:
            return None

        try:
            claims = self._codec.verify(token)
        except NoValidCredential as exc:
            logger.debug("Bearer credential rejected (%s)", type(exc).__name__)
            return None

        try:
            marker = await self._accounts.get_session_marker(claims.account_id)
            if marker is None:
                logger.debug("No live session for account %s", claims.account_id)
                return None
            if claims.legacy and not await self._legacy_session_issued(token, claims.account_id):
                logger.warning("Legacy token for account %s was never issued", claims.account_id)
                return None
            account = await self._accounts.get(claims.account_id)
        except StoreUnavailable as exc:
            logger.warning("Store unavailable while resolving credentials: %s", exc)
            return None

        if account is None:
            logger.debug("Token for unknown account %s", claims.account_id)
            return None

        return ResolvedIdentity(
            kind=IdentityKind.AUTHENTICATED,
            identity=authenticated_identity(account.account_id),
            tier=Tier.PREMIUM if account.is_premium else Tier.FREE,
            source=IdentitySource.LEGACY_TOKEN if claims.legacy else IdentitySource.SESSION_TOKEN,
            account=account,
        )

    async def _legacy_session_issued(self, token: str, account_id: str) -> bool:
        marker = await self._accounts.get_legacy_session(token)
        return marker is not None and marker.scheme == "legacy" and marker.account_id == account_id

    # ── Steps 2 + 3 ───────────────────────────────────────────────────────────

    def _anonymous(self, credentials: RequestCredentials) -> ResolvedIdentity:
        fingerprint = self.clean_device_id(credentials.fingerprint, self._fp_min)
        if fingerprint is not None:
            return ResolvedIdentity(
                kind=IdentityKind.ANONYMOUS,
                identity=anonymous_identity(fingerprint),
                tier=Tier.ANONYMOUS,
                source=IdentitySource.FINGERPRINT,
            )

        cookie_id = self.clean_device_id(credentials.anonymous_cookie, 1)
        issued = None
        if cookie_id is None:
            cookie_id = issued = self._new_id()
        return ResolvedIdentity(
            kind=IdentityKind.ANONYMOUS,
            identity=anonymous_identity(cookie_id),
            tier=Tier.ANONYMOUS,
            source=IdentitySource.COOKIE,
            issued_cookie=issued,
        )

    def clean_device_id(self, value: object, min_length: int) -> Optional[str]:
        if not isinstance(value, str):
            return None
        value = value.strip()
        if not value or len(value) < min_length or len(value) > self._fp_max:
            return None
        return value
