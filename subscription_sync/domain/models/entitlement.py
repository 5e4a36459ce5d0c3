"""Entitlement read models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from .subscription import Subscription


class EntitlementState(str, Enum):
    ENTITLED = "entitled"
    GRACE = "grace"
    NONE = "none"
    EXPIRED = "expired"
    CANCELED = "canceled"
    PAST_DUE = "past_due"


@dataclass(slots=True)
class PaymentGrace:
    """Short-lived flag set after a verified checkout, before the webhook lands."""

    user_id: str
    checkout_session_id: Optional[str]
    granted_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return self.granted_at <= now < self.expires_at


@dataclass(slots=True)
class EntitlementStatus:
    entitled: bool
    state: EntitlementState
    subscription: Optional[Subscription] = None
    grace_expires_at: Optional[datetime] = None
