from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

from ..models import PaymentGrace, Subscription, SubscriptionFields, SubscriptionStatus


class SubscriptionRepository(Protocol):
    """Abstract storage for reconciled subscription rows.

    Every mutation is atomic per row. Implementations raise ``StorageError`` on
    backend failures.
    """

    def find_by_user_id(self, user_id: str) -> Optional[Subscription]:
        ...

    def find_by_external_subscription_id(self, external_subscription_id: str) -> Optional[Subscription]:
        ...

    def upsert_by_user_id(self, user_id: str, fields: SubscriptionFields) -> Subscription:
        ...

    def upsert_by_external_subscription_id(
        self,
        external_subscription_id: str,
        fields: SubscriptionFields,
        user_id: Optional[str] = None,
    ) -> Optional[Subscription]:
        ...

    def mark_canceled(self, external_subscription_id: str, canceled_at: datetime) -> Optional[Subscription]:
        ...

    def update_status_by_external_subscription_id(
        self,
        external_subscription_id: str,
        status: SubscriptionStatus,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        ...


class PaymentGraceRepository(Protocol):
    """Abstract storage for short-lived post-checkout grace flags."""

    def get_grace(self, user_id: str) -> Optional[PaymentGrace]:
        ...

    def save_grace(self, grace: PaymentGrace) -> PaymentGrace:
        ...
