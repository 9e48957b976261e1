"""
billing.py — Apply payment-provider events to Account billing state.

The webhook endpoint itself (signature verification against the provider
secret) lives with the payment integration; it calls BillingService.apply()
with an already-verified, provider-neutral BillingEvent.

Providers deliver at least once and in no guaranteed order, so:
  - an event_id seen before is ignored (DUPLICATE)
  - a subscription-state event older than the last one applied is ignored
    (STALE), so a late "updated: active" cannot undo a "deleted"
Payment events are not order-sensitive and only need de-duplication.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from safemessage.core.keys import BillingCustomerKey
from safemessage.core.kv import KVStore
from safemessage.models.account import PaymentEvent
from safemessage.services.accounts import AccountRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = {"active", "trialing"}


class BillingEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.completed"
    SUBSCRIPTION_UPDATED = "subscription.updated"
    SUBSCRIPTION_DELETED = "subscription.deleted"
    SUBSCRIPTION_PAUSED = "subscription.paused"
    PAYMENT_SUCCEEDED = "payment.succeeded"


_STATE_EVENTS = {
    BillingEventType.CHECKOUT_COMPLETED,
    BillingEventType.SUBSCRIPTION_UPDATED,
    BillingEventType.SUBSCRIPTION_DELETED,
    BillingEventType.SUBSCRIPTION_PAUSED,
}


class BillingEvent(BaseModel):
    event_id: str
    type: BillingEventType
    occurred_at: datetime
    account_id: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    plan: Optional[str] = None
    status: Optional[str] = None
    period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    amount_cents: int = 0
    currency: str = "usd"


class ApplyOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    UNKNOWN_ACCOUNT = "unknown_account"


class BillingService:
    def __init__(self, store: KVStore, remembered_events: int = 200):
        self._store = store
        self._accounts = AccountRepository(store)
        self._remembered_events = remembered_events

    async def apply(self, event: BillingEvent) -> ApplyOutcome:
        account_id = event.account_id
        if not account_id and event.customer_id:
            account_id = await self._store.get(BillingCustomerKey(event.customer_id))
        account = await self._accounts.get(account_id) if account_id else None
        if account is None:
            logger.warning("Billing event %s (%s) for unknown account", event.event_id, event.type.value)
            return ApplyOutcome.UNKNOWN_ACCOUNT

        billing = account.billing.model_copy(deep=True)
        if event.event_id in billing.processed_event_ids:
            logger.info("Skipping duplicate billing event %s", event.event_id)
            return ApplyOutcome.DUPLICATE

        is_state_event = event.type in _STATE_EVENTS
        if is_state_event and billing.last_event_at and event.occurred_at < billing.last_event_at:
            logger.info("Skipping stale billing event %s (%s)", event.event_id, event.type.value)
            self._remember(billing, event.event_id)
            await self._accounts.save(account.model_copy(update={"billing": billing}))
            return ApplyOutcome.STALE

        is_premium = account.is_premium
        if event.customer_id:
            billing.customer_id = event.customer_id

        if event.type is BillingEventType.CHECKOUT_COMPLETED:
            billing.subscription_id = event.subscription_id or billing.subscription_id
            billing.plan = event.plan or billing.plan
            billing.status = "active"
            billing.cancel_at_period_end = False
            is_premium = True
            self._record_payment(billing, event)
        elif event.type is BillingEventType.SUBSCRIPTION_UPDATED:
            billing.subscription_id = event.subscription_id or billing.subscription_id
            billing.plan = event.plan or billing.plan
            billing.status = event.status or billing.status
            billing.period_end = event.period_end or billing.period_end
            billing.cancel_at_period_end = event.cancel_at_period_end
            is_premium = billing.status in ACTIVE_STATUSES
        elif event.type in (BillingEventType.SUBSCRIPTION_DELETED, BillingEventType.SUBSCRIPTION_PAUSED):
            billing.status = "canceled" if event.type is BillingEventType.SUBSCRIPTION_DELETED else "paused"
            billing.cancel_at_period_end = False
            is_premium = False
        elif event.type is BillingEventType.PAYMENT_SUCCEEDED:
            self._record_payment(billing, event)

        if is_state_event:
            billing.last_event_at = event.occurred_at
        self._remember(billing, event.event_id)

        await self._accounts.save(account.model_copy(update={"billing": billing, "is_premium": is_premium}))
        if billing.customer_id:
            await self._store.set(BillingCustomerKey(billing.customer_id), account.account_id)

        logger.info(
            "Applied billing event %s (%s) to account %s, premium=%s",
            event.event_id, event.type.value, account.account_id, is_premium,
        )
        return ApplyOutcome.APPLIED

    @staticmethod
    def _record_payment(billing, event: BillingEvent) -> None:
        if event.amount_cents <= 0:
            return
        billing.payment_history.append(PaymentEvent(
            event_id=event.event_id,
            kind=event.type.value,
            amount_cents=event.amount_cents,
            currency=event.currency,
            occurred_at=event.occurred_at,
        ))
        billing.payment_history.sort(key=lambda p: p.occurred_at)
        billing.lifetime_value_cents += event.amount_cents

    def _remember(self, billing, event_id: str) -> None:
        billing.processed_event_ids.append(event_id)
        del billing.processed_event_ids[:-self._remembered_events]
