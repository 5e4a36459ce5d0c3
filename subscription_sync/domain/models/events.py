"""Typed webhook events produced by verification and normalization."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from .subscription import Subscription, SubscriptionStatus


@dataclass(frozen=True, slots=True)
class VerifiedEvent:
    """Signed processor event body, authenticity already checked."""

    id: Optional[str]
    type: str
    created: Optional[int]
    data_object: Dict[str, Any]


class EventKind(str, Enum):
    CHECKOUT_COMPLETED = "checkout_completed"
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_DELETED = "subscription_deleted"
    INVOICE_PAID = "invoice_paid"
    INVOICE_PAYMENT_FAILED = "invoice_payment_failed"
    UNHANDLED = "unhandled"


@dataclass(frozen=True, slots=True)
class CheckoutPayload:
    session_id: Optional[str]
    user_id: Optional[str]
    external_subscription_id: Optional[str]
    external_customer_id: Optional[str]
    plan: Optional[str] = None
    mode: Optional[str] = None
    payment_status: Optional[str] = None
    created: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class SubscriptionPayload:
    external_subscription_id: Optional[str]
    external_customer_id: Optional[str] = None
    user_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    plan: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    has_cancel_at: bool = False


@dataclass(frozen=True, slots=True)
class InvoicePayload:
    invoice_id: Optional[str]
    external_subscription_id: Optional[str]
    external_customer_id: Optional[str] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None


EventPayload = Union[CheckoutPayload, SubscriptionPayload, InvoicePayload, None]


@dataclass(frozen=True, slots=True)
class NormalizedEvent:
    kind: EventKind
    payload: EventPayload
    event_id: Optional[str] = None
    source_type: Optional[str] = None
    created: Optional[int] = None


class ReconciliationOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CANCELED = "canceled"
    IGNORED = "ignored"
    UNTRACKED = "untracked"
    ORPHAN = "orphan"
    NOT_SUBSCRIPTION = "not_subscription"
    SUPERSEDED = "superseded"


@dataclass(frozen=True, slots=True)
class ReconciliationResult:
    kind: EventKind
    outcome: ReconciliationOutcome
    subscription: Optional[Subscription] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "outcome": self.outcome.value,
            "subscription_id": self.subscription.id if self.subscription else None,
        }
