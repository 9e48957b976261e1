"""
identity.py — Who is calling, and how much do we trust them.

Identity strings are the canonical keys every counter is stored under:
  authenticated:<account_id>    — proven by a verified session token
  anonymous:<fingerprint|uuid>  — a device fingerprint or the fallback cookie id
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from safemessage.models.account import Account

AUTHENTICATED_PREFIX = "authenticated:"
ANONYMOUS_PREFIX = "anonymous:"


class Tier(str, Enum):
    """Trust / quota classification used by the limiter and the ledger."""

    ANONYMOUS = "anonymous"
    FREE = "free"
    PREMIUM = "premium"


class IdentityKind(str, Enum):
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class IdentitySource(str, Enum):
    """Which of the four credential shapes produced the identity."""

    SESSION_TOKEN = "session_token"
    LEGACY_TOKEN = "legacy_token"
    FINGERPRINT = "fingerprint"
    COOKIE = "cookie"


def authenticated_identity(account_id: str) -> str:
    return f"{AUTHENTICATED_PREFIX}{account_id}"


def anonymous_identity(device_id: str) -> str:
    return f"{ANONYMOUS_PREFIX}{device_id}"


def account_id_of(identity: str) -> str:
    """Return the account id inside an ``authenticated:`` identity."""
    if not identity.startswith(AUTHENTICATED_PREFIX):
        raise ValueError(f"not an authenticated identity: {identity!r}")
    return identity[len(AUTHENTICATED_PREFIX):]


def is_anonymous(identity: str) -> bool:
    return identity.startswith(ANONYMOUS_PREFIX)


@dataclass(frozen=True)
class ResolvedIdentity:
    kind: IdentityKind
    identity: str
    tier: Tier
    source: IdentitySource
    account: Optional[Account] = None
    # Set when resolution minted a new anonymous cookie id; the route must
    # send it back as Set-Cookie.
    issued_cookie: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.kind is IdentityKind.AUTHENTICATED
