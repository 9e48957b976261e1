"""
keys.py — Typed composite keys for the key-value store.

Every record lives under a namespace prefix followed by its parts, joined
with ":". Free-form parts (identities, ids supplied by clients) are
percent-encoded so a crafted fingerprint containing ":" can never land on
another record's key.

    str(RateWindowKey(Tier.ANONYMOUS, "anonymous:abc", 1700000040))
    → "ratelimit:anonymous:anonymous%3Aabc:1700000040"
"""

import hashlib
from dataclasses import dataclass
from typing import ClassVar
from urllib.parse import quote

from safemessage.models.identity import Tier


def _part(value: object) -> str:
    return quote(str(value), safe="")


@dataclass(frozen=True)
class StoreKey:
    namespace: ClassVar[str] = ""

    def parts(self) -> tuple:
        raise NotImplementedError

    def __str__(self) -> str:
        return ":".join([self.namespace, *(_part(p) for p in self.parts())])


@dataclass(frozen=True)
class AccountKey(StoreKey):
    namespace: ClassVar[str] = "account"
    account_id: str

    def parts(self) -> tuple:
        return (self.account_id,)


@dataclass(frozen=True)
class SessionMarkerKey(StoreKey):
    namespace: ClassVar[str] = "session"
    account_id: str

    def parts(self) -> tuple:
        return (self.account_id,)


@dataclass(frozen=True)
class AnonymousUsageKey(StoreKey):
    namespace: ClassVar[str] = "usage"
    identity: str

    def parts(self) -> tuple:
        return (self.identity,)


@dataclass(frozen=True)
class MigrationKey(StoreKey):
    namespace: ClassVar[str] = "migrated"
    identity: str

    def parts(self) -> tuple:
        return (self.identity,)


@dataclass(frozen=True)
class BillingCustomerKey(StoreKey):
    namespace: ClassVar[str] = "billing-customer"
    customer_id: str

    def parts(self) -> tuple:
        return (self.customer_id,)


@dataclass(frozen=True)
class RateWindowKey(StoreKey):
    namespace: ClassVar[str] = "ratelimit"
    tier: Tier
    identity: str
    window_start: int

    def parts(self) -> tuple:
        return (self.tier.value, self.identity, self.window_start)


@dataclass(frozen=True)
class LegacySessionKey(StoreKey):
    """One imported pre-JWT token, keyed by its SHA-256 so the raw token is never stored."""

    namespace: ClassVar[str] = "legacy-session"
    token: str

    def parts(self) -> tuple:
        return (hashlib.sha256(self.token.encode("utf-8")).hexdigest(),)
