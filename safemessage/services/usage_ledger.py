"""
usage_ledger.py — Free-use metering per identity.

  Premium            always allowed, nothing is read or written
  Authenticated free Account.free_uses_remaining counts down to 0
  Anonymous          AnonymousUsage.used counts up to free_limit

Consumption is a plain read-modify-write on the store. Two concurrent
requests for the same identity can both read the same value and both
write value±1, granting one extra use. That under-enforcement is
accepted; see the note on atomic increments in core/kv.py.

migrate() folds an anonymous identity's history into an account exactly
once. Both sides are guarded: an account records the identity it absorbed
(Account.migrated_from) and takes no second history, so linking fresh
devices cannot refill an exhausted quota; the anonymous identity gets a
MigrationRecord so it is never folded into another account. The account
is written first, so a retry after a partial failure reports
ALREADY_MIGRATED instead of applying the bonus twice.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from safemessage.core.config import settings
from safemessage.core.errors import NoValidCredential
from safemessage.core.keys import AnonymousUsageKey, MigrationKey
from safemessage.core.kv import KVStore
from safemessage.models.account import Account, AnonymousUsage, MigrationRecord
from safemessage.models.identity import ResolvedIdentity, Tier, account_id_of, is_anonymous
from safemessage.services.accounts import AccountRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsumeResult:
    allowed: bool
    remaining: Optional[int]  # None means unlimited

    @property
    def unlimited(self) -> bool:
        return self.remaining is None


@dataclass(frozen=True)
class UsageSnapshot:
    used: int
    limit: int
    premium: bool
    authenticated: bool


class MigrationStatus(str, Enum):
    MIGRATED = "migrated"
    ALREADY_MIGRATED = "already_migrated"
    NOTHING_TO_MIGRATE = "nothing_to_migrate"


@dataclass(frozen=True)
class MigrationResult:
    status: MigrationStatus
    account: Account
    migrated_scans: int = 0
    bonus_uses: int = 0


class UsageLedger:
    def __init__(
        self,
        store: KVStore,
        free_limit: int | None = None,
        link_bonus: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._store = store
        self._accounts = AccountRepository(store)
        self.free_limit = settings.free_limit if free_limit is None else free_limit
        self.link_bonus = settings.link_bonus if link_bonus is None else link_bonus
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    # ── Consumption ───────────────────────────────────────────────────────────

    async def check_and_consume(self, identity: str, tier: Tier) -> ConsumeResult:
        """Spend one free use for *identity* if any are left."""
        if tier is Tier.PREMIUM:
            return ConsumeResult(allowed=True, remaining=None)
        if tier is Tier.FREE:
            return await self._consume_account(account_id_of(identity))
        return await self._consume_anonymous(identity)

    async def _consume_account(self, account_id: str) -> ConsumeResult:
        account = await self._accounts.get(account_id)
        if account is None:
            raise NoValidCredential(f"account {account_id} no longer exists")
        if account.is_premium:
            # Upgraded between resolution and consumption.
            return ConsumeResult(allowed=True, remaining=None)
        if account.free_uses_remaining <= 0:
            return ConsumeResult(allowed=False, remaining=0)

        updated = account.model_copy(update={
            "free_uses_remaining": account.free_uses_remaining - 1,
            "total_scans": account.total_scans + 1,
            "last_active_at": self._now(),
        })
        await self._accounts.save(updated)
        return ConsumeResult(allowed=True, remaining=updated.free_uses_remaining)

    async def _consume_anonymous(self, identity: str) -> ConsumeResult:
        key = AnonymousUsageKey(identity)
        usage = await self._load_anonymous(key) or AnonymousUsage()
        if usage.premium_override:
            return ConsumeResult(allowed=True, remaining=None)
        if usage.used >= self.free_limit:
            return ConsumeResult(allowed=False, remaining=0)

        usage.used += 1
        await self._store.set(key, usage.model_dump(mode="json"))
        return ConsumeResult(allowed=True, remaining=self.free_limit - usage.used)

    async def _load_anonymous(self, key: AnonymousUsageKey) -> Optional[AnonymousUsage]:
        raw = await self._store.get(key)
        return AnonymousUsage.model_validate(raw) if raw is not None else None

    # ── Read-only views ───────────────────────────────────────────────────────

    async def snapshot(self, resolved: ResolvedIdentity) -> UsageSnapshot:
        """Usage counts for the /api/usage endpoint. Never writes."""
        if resolved.account is not None:
            account = resolved.account
            return UsageSnapshot(
                used=max(0, self.free_limit - account.free_uses_remaining),
                limit=self.free_limit,
                premium=account.is_premium,
                authenticated=True,
            )
        usage = await self._load_anonymous(AnonymousUsageKey(resolved.identity)) or AnonymousUsage()
        return UsageSnapshot(
            used=usage.used,
            limit=self.free_limit,
            premium=usage.premium_override,
            authenticated=False,
        )

    async def record_flag(self, identity: str) -> None:
        """Count a message judged unsafe against the caller's account."""
        if is_anonymous(identity):
            return
        account = await self._accounts.get(account_id_of(identity))
        if account is None:
            return
        await self._accounts.save(account.model_copy(update={"total_flags": account.total_flags + 1}))

    # ── Migration ─────────────────────────────────────────────────────────────

    async def migrate(self, anonymous_identity: str, account_id: str) -> MigrationResult:
        """
        Fold anonymous usage into *account_id*.

        free_uses_remaining becomes max(0, free_limit + link_bonus - used)
        and total_scans takes the anonymous count. A paid anonymous visitor
        (premium_override) carries premium over to the account.
        """
        if not is_anonymous(anonymous_identity):
            raise ValueError(f"not an anonymous identity: {anonymous_identity!r}")

        account = await self._accounts.get(account_id)
        if account is None:
            raise NoValidCredential(f"account {account_id} does not exist")

        if account.migrated_from is not None:
            logger.info(
                "Account %s already absorbed %s; not linking %s",
                account_id, account.migrated_from, anonymous_identity,
            )
            return MigrationResult(status=MigrationStatus.ALREADY_MIGRATED, account=account)

        migration_key = MigrationKey(anonymous_identity)
        if await self._store.get(migration_key) is not None:
            return MigrationResult(status=MigrationStatus.ALREADY_MIGRATED, account=account)

        usage_key = AnonymousUsageKey(anonymous_identity)
        usage = await self._load_anonymous(usage_key)
        if usage is None:
            return MigrationResult(status=MigrationStatus.NOTHING_TO_MIGRATE, account=account)

        now = self._now()
        migrated = account.model_copy(update={
            "free_uses_remaining": max(0, self.free_limit + self.link_bonus - usage.used),
            "total_scans": usage.used,
            "is_premium": account.is_premium or usage.premium_override,
            "migrated_from": anonymous_identity,
            "last_active_at": now,
        })
        await self._accounts.save(migrated)

        record = MigrationRecord(
            anonymous_identity=anonymous_identity,
            account_id=account_id,
            migrated_scans=usage.used,
            migrated_at=now,
        )
        await self._store.set(migration_key, record.model_dump(mode="json"))
        await self._store.delete(usage_key)

        logger.info(
            "Migrated %d anonymous scans into account %s (+%d bonus)",
            usage.used, account_id, self.link_bonus,
        )
        return MigrationResult(
            status=MigrationStatus.MIGRATED,
            account=migrated,
            migrated_scans=usage.used,
            bonus_uses=self.link_bonus,
        )
