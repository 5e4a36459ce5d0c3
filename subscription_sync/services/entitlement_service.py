"""Read-side entitlement checks over reconciled subscriptions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..domain.models import (
    ENTITLING_STATUSES,
    EntitlementState,
    EntitlementStatus,
    PaymentGrace,
    Subscription,
    SubscriptionStatus,
)
from ..domain.ports.persistence import PaymentGraceRepository, SubscriptionRepository

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 3600


class EntitlementService:
    """Answers whether a user may access gated content right now.

    A verified checkout grants a short grace flag so a paying user is not
    blocked while the webhook that creates their row is still in flight. The
    flag stops counting once the row has been written after it was granted,
    and it always expires after ``grace_seconds``.
    """

    def __init__(
        self,
        subscription_repository: SubscriptionRepository,
        grace_repository: Optional[PaymentGraceRepository] = None,
        grace_seconds: int = DEFAULT_GRACE_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._subscriptions = subscription_repository
        self._grace = grace_repository
        self._grace_window = timedelta(seconds=grace_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_subscription(self, user_id: str) -> Optional[Subscription]:
        return self._subscriptions.find_by_user_id(user_id)

    def is_entitled(self, user_id: str, now: Optional[datetime] = None) -> bool:
        return self.resolve(user_id, now=now).entitled

    def resolve(self, user_id: str, now: Optional[datetime] = None) -> EntitlementStatus:
        now = now or self._clock()
        subscription = self._subscriptions.find_by_user_id(user_id)
        if subscription is not None and subscription.is_entitling(now):
            return EntitlementStatus(entitled=True, state=EntitlementState.ENTITLED, subscription=subscription)

        grace = self._active_grace(user_id, subscription, now)
        if grace is not None:
            return EntitlementStatus(
                entitled=True,
                state=EntitlementState.GRACE,
                subscription=subscription,
                grace_expires_at=grace.expires_at,
            )

        return EntitlementStatus(
            entitled=False,
            state=self._denied_state(subscription),
            subscription=subscription,
        )

    def grant_grace(
        self,
        user_id: str,
        checkout_session_id: Optional[str] = None,
        external_subscription_id: Optional[str] = None,
        session_created_at: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> Optional[PaymentGrace]:
        """Grant a grace flag for a confirmed checkout, or return None when refused.

        A session only bridges the webhook delay once: it is refused when it is
        older than the grace window or when its subscription is already tracked,
        and re-confirming the session the current flag came from does not renew it.
        """
        if self._grace is None:
            raise RuntimeError("Payment grace storage is not configured")
        now = now or self._clock()

        if session_created_at is not None and now - session_created_at > self._grace_window:
            logger.warning(
                "Refused payment grace for user %s: checkout session %s was created at %s",
                user_id,
                checkout_session_id,
                session_created_at.isoformat(),
            )
            return None

        if external_subscription_id and self._subscriptions.find_by_external_subscription_id(external_subscription_id):
            logger.info(
                "Refused payment grace for user %s: subscription %s is already tracked",
                user_id,
                external_subscription_id,
            )
            return None

        existing = self._grace.get_grace(user_id)
        if checkout_session_id and existing is not None and existing.checkout_session_id == checkout_session_id:
            return existing

        grace = PaymentGrace(
            user_id=user_id,
            checkout_session_id=checkout_session_id,
            granted_at=now,
            expires_at=now + self._grace_window,
        )
        logger.info("Granted payment grace to user %s until %s", user_id, grace.expires_at.isoformat())
        return self._grace.save_grace(grace)

    def _active_grace(
        self,
        user_id: str,
        subscription: Optional[Subscription],
        now: datetime,
    ) -> Optional[PaymentGrace]:
        if self._grace is None:
            return None
        grace = self._grace.get_grace(user_id)
        if grace is None or not grace.is_valid(now):
            return None
        # Once the webhook has written the row, the row is authoritative.
        if subscription is not None and subscription.updated_at and subscription.updated_at > grace.granted_at:
            return None
        return grace

    @staticmethod
    def _denied_state(subscription: Optional[Subscription]) -> EntitlementState:
        if subscription is None:
            return EntitlementState.NONE
        if subscription.status in ENTITLING_STATUSES or subscription.status is SubscriptionStatus.EXPIRED:
            return EntitlementState.EXPIRED
        if subscription.status is SubscriptionStatus.CANCELED:
            return EntitlementState.CANCELED
        return EntitlementState.PAST_DUE
