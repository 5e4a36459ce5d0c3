"""Subscription domain model mirrored from the payment processor."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    EXPIRED = "expired"

    @classmethod
    def from_processor(cls, value: Optional[str]) -> Optional["SubscriptionStatus"]:
        """Map a processor subscription status onto the local status set."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return _PROCESSOR_STATUS_ALIASES.get(value)


_PROCESSOR_STATUS_ALIASES = {
    "incomplete": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "paused": SubscriptionStatus.PAST_DUE,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "cancelled": SubscriptionStatus.CANCELED,
}

ENTITLING_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})


class Subscription:
    """
    Subscription entity representing a user's recurring-billing record.

    Attributes:
        id: Opaque identifier assigned on first insert
        user_id: Identity principal owning the subscription
        status: Local subscription status
        plan: Plan label
        external_customer_id: Processor customer ID
        external_subscription_id: Processor subscription ID (correlation key)
        current_period_start: Start of current billing period
        current_period_end: End of current billing period (expiry boundary)
        cancel_at: Scheduled cancellation time
        canceled_at: Executed cancellation time
        cancel_at_period_end: Whether the subscription ends with the period
        created_at: Row creation timestamp
        updated_at: Last mutation timestamp
    """

    def __init__(
        self,
        id: str,
        user_id: str,
        status: SubscriptionStatus,
        plan: Optional[str] = None,
        external_customer_id: Optional[str] = None,
        external_subscription_id: Optional[str] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
        cancel_at: Optional[datetime] = None,
        canceled_at: Optional[datetime] = None,
        cancel_at_period_end: bool = False,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ):
        self.id = id
        self.user_id = user_id
        self.status = SubscriptionStatus(status)
        self.plan = plan
        self.external_customer_id = external_customer_id
        self.external_subscription_id = external_subscription_id
        self.current_period_start = current_period_start
        self.current_period_end = current_period_end
        self.cancel_at = cancel_at
        self.canceled_at = canceled_at
        self.cancel_at_period_end = cancel_at_period_end
        self.created_at = created_at
        self.updated_at = updated_at

    def is_entitling(self, now: datetime) -> bool:
        """Check whether the subscription grants access at ``now``."""
        if self.status not in ENTITLING_STATUSES:
            return False
        if self.current_period_end is None or now >= self.current_period_end:
            return False
        if self.cancel_at is not None and now >= self.cancel_at:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "status": self.status.value,
            "plan": self.plan,
            "external_customer_id": self.external_customer_id,
            "external_subscription_id": self.external_subscription_id,
            "current_period_start": self.current_period_start,
            "current_period_end": self.current_period_end,
            "cancel_at": self.cancel_at,
            "canceled_at": self.canceled_at,
            "cancel_at_period_end": self.cancel_at_period_end,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Subscription):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return (
            f"<Subscription id={self.id} user_id={self.user_id} "
            f"external_subscription_id={self.external_subscription_id} status={self.status.value}>"
        )


@dataclass(slots=True)
class SubscriptionFields:
    """Partial set of columns carried by a single processor event.

    ``None`` means "not supplied by this event" and never clears a stored value.
    """

    status: Optional[SubscriptionStatus] = None
    plan: Optional[str] = None
    external_customer_id: Optional[str] = None
    external_subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
    clear_cancel_at: bool = field(default=False)

    def supplied(self) -> Dict[str, Any]:
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if item.name != "clear_cancel_at" and getattr(self, item.name) is not None
        }
