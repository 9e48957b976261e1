"""
gate.py — Admission decision for a metered request.

    resolve identity → rate limit → usage ledger → verdict

Rate limiting runs first: it is cheap and protects the infrastructure, and
a request it rejects must not spend a free use. Quota is spent only on
requests that would otherwise proceed.

Store failure policy:
  - rate limiter store down  → log, skip the limit, continue (fail open)
  - ledger store down        → Unavailable (fail closed, never hand out
                               free uses we could not record)
Resolution never fails the request; it degrades to anonymous.

Writes are partial-failure tolerant rather than transactional: a rate
slot spent on a request that then hits Unavailable is not refunded.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, ClassVar, Optional, Union

from safemessage.core.errors import NoValidCredential, StoreUnavailable
from safemessage.core.kv import KVStore
from safemessage.core.tokens import TokenCodec
from safemessage.models.identity import ResolvedIdentity
from safemessage.services.identity import CredentialResolver, RequestCredentials
from safemessage.services.rate_limiter import RateLimiter, RateLimitResult
from safemessage.services.usage_ledger import UsageLedger

logger = logging.getLogger(__name__)


# ── Verdicts ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Allow:
    reason: ClassVar[str] = "allowed"

    identity: ResolvedIdentity
    remaining_uses: Optional[int]  # None = unlimited
    rate: Optional[RateLimitResult]  # None when the limiter failed open


@dataclass(frozen=True)
class RateLimited:
    reason: ClassVar[str] = "rate_limited"

    identity: ResolvedIdentity
    rate: RateLimitResult

    @property
    def retry_after(self) -> int:
        return self.rate.retry_after

    @property
    def hint(self) -> str:
        return f"Too many requests. Try again in {self.retry_after} seconds."


@dataclass(frozen=True)
class QuotaExceeded:
    reason: ClassVar[str] = "quota_exceeded"
    hint: ClassVar[str] = "You have used all your free scans. Upgrade to Premium for unlimited scans."

    identity: ResolvedIdentity
    rate: Optional[RateLimitResult]


@dataclass(frozen=True)
class Unauthenticated:
    reason: ClassVar[str] = "unauthenticated"
    hint: ClassVar[str] = "Sign in to continue."

    identity: Optional[ResolvedIdentity]


@dataclass(frozen=True)
class Unavailable:
    reason: ClassVar[str] = "store_unavailable"
    hint: ClassVar[str] = "Usage tracking is temporarily unavailable. Please retry shortly."
    retry_after: ClassVar[int] = 5

    identity: ResolvedIdentity
    rate: Optional[RateLimitResult]


Verdict = Union[Allow, RateLimited, QuotaExceeded, Unauthenticated, Unavailable]


# ── Orchestrator ──────────────────────────────────────────────────────────────

class Gate:
    def __init__(self, resolver: CredentialResolver, limiter: RateLimiter, ledger: UsageLedger):
        self.resolver = resolver
        self.limiter = limiter
        self.ledger = ledger

    async def admit(self, credentials: RequestCredentials, require_auth: bool = False) -> Verdict:
        resolved = await self.resolver.resolve(credentials)
        if require_auth and not resolved.authenticated:
            return Unauthenticated(identity=resolved)

        try:
            rate = await self.limiter.check_and_increment(resolved.identity, resolved.tier)
        except StoreUnavailable as exc:
            logger.warning("Rate-limit store unavailable, allowing %s: %s", resolved.tier.value, exc)
            rate = None
        if rate is not None and not rate.allowed:
            return RateLimited(identity=resolved, rate=rate)

        try:
            usage = await self.ledger.check_and_consume(resolved.identity, resolved.tier)
        except StoreUnavailable as exc:
            logger.error("Usage store unavailable, denying %s: %s", resolved.tier.value, exc)
            return Unavailable(identity=resolved, rate=rate)
        except NoValidCredential:
            return Unauthenticated(identity=resolved)

        if not usage.allowed:
            return QuotaExceeded(identity=resolved, rate=rate)
        return Allow(identity=resolved, remaining_uses=usage.remaining, rate=rate)


def build_gate(store: KVStore, clock: Callable[[], float] = time.time) -> Gate:
    """Wire the components with settings-driven defaults."""
    codec = TokenCodec(clock=clock)
    return Gate(
        resolver=CredentialResolver(store, codec),
        limiter=RateLimiter(store, clock=clock),
        ledger=UsageLedger(store, clock=clock),
    )
