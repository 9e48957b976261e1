"""
account.py — Pydantic schemas for everything persisted in the key-value store.

  Account            — one per authenticated user, keyed by account_id
  BillingInfo        — payment-provider state embedded in Account
  PaymentEvent       — one entry of BillingInfo.payment_history
  AnonymousUsage     — free-use counter for an anonymous identity
  SessionMarker      — proof that an account's sessions have not been revoked
                       (scheme "legacy" marks one imported pre-JWT token)
  MigrationRecord    — anonymous identity → account mapping written on linking

Records are stored as JSON-compatible dicts (model_dump(mode="json")) so
the same payload works for MemoryStore and Redis.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ── Billing ───────────────────────────────────────────────────────────────────

class PaymentEvent(BaseModel):
    event_id: str
    kind: str  # checkout.completed | payment.succeeded
    amount_cents: int = 0
    currency: str = "usd"
    occurred_at: datetime


class BillingInfo(BaseModel):
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    plan: Optional[str] = None
    status: Optional[str] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    payment_history: list[PaymentEvent] = Field(default_factory=list)
    lifetime_value_cents: int = 0
    # Ordering guard for subscription-state events.
    last_event_at: Optional[datetime] = None
    processed_event_ids: list[str] = Field(default_factory=list)


# ── Account ───────────────────────────────────────────────────────────────────

class Account(BaseModel):
    """
    Persisted user record.

    free_uses_remaining is only meaningful while is_premium is False;
    nothing reads it for premium accounts.

    migrated_from is the anonymous identity whose usage was folded in.
    An account absorbs at most one anonymous history.
    """

    account_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    free_uses_remaining: int = Field(default=0, ge=0)
    total_scans: int = Field(default=0, ge=0)
    total_flags: int = Field(default=0, ge=0)
    is_premium: bool = False
    migrated_from: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)
    billing: BillingInfo = Field(default_factory=BillingInfo)


class AccountOut(BaseModel):
    """Account snapshot returned to clients — no billing internals."""

    account_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    free_uses_remaining: int
    total_scans: int
    total_flags: int
    is_premium: bool
    created_at: datetime
    last_active_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountOut":
        return cls(**account.model_dump(exclude={"billing", "migrated_from"}))


# ── Anonymous usage / sessions / migration ────────────────────────────────────

class AnonymousUsage(BaseModel):
    used: int = Field(default=0, ge=0)
    # Set when an anonymous visitor paid before ever signing in.
    premium_override: bool = False


class SessionMarker(BaseModel):
    account_id: str
    scheme: str = "current"  # current | legacy
    created_at: datetime = Field(default_factory=utcnow)
    note: str = ""


class MigrationRecord(BaseModel):
    anonymous_identity: str
    account_id: str
    migrated_scans: int
    migrated_at: datetime = Field(default_factory=utcnow)
