"""Reconciliation of processor webhook events into local subscription state."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Protocol

from ..domain.errors import MissingCorrelation, OrphanSubscriptionEvent
from ..domain.models import (
    CheckoutPayload,
    EventKind,
    InvoicePayload,
    NormalizedEvent,
    ReconciliationOutcome,
    ReconciliationResult,
    Subscription,
    SubscriptionFields,
    SubscriptionPayload,
    SubscriptionStatus,
)
from ..domain.ports.persistence import SubscriptionRepository
from .event_normalizer import subscription_payload_from_object

logger = logging.getLogger(__name__)

Handler = Callable[[NormalizedEvent], ReconciliationResult]

# Statuses a processor lookup may report that must not be overridden by the
# checkout handler's default of "active".
_LOOKUP_AUTHORITATIVE = frozenset(
    {
        SubscriptionStatus.TRIALING,
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.EXPIRED,
    }
)


class SubscriptionLookup(Protocol):
    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        ...


class ReconciliationService:
    """Dispatches normalized events to per-kind handlers.

    Handlers assume nothing about which events were processed before them:
    delivery is at-least-once and unordered, so every write goes through the
    repository's idempotent, monotonic merge.
    """

    def __init__(
        self,
        subscription_repository: SubscriptionRepository,
        subscription_lookup: Optional[SubscriptionLookup] = None,
        default_plan: str = "standard",
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = subscription_repository
        self._lookup = subscription_lookup
        self._default_plan = default_plan
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._handlers: Dict[EventKind, Handler] = {
            EventKind.CHECKOUT_COMPLETED: self._handle_checkout_completed,
            EventKind.SUBSCRIPTION_CREATED: self._handle_subscription_upsert,
            EventKind.SUBSCRIPTION_UPDATED: self._handle_subscription_upsert,
            EventKind.SUBSCRIPTION_DELETED: self._handle_subscription_deleted,
            EventKind.INVOICE_PAID: self._handle_invoice_paid,
            EventKind.INVOICE_PAYMENT_FAILED: self._handle_invoice_payment_failed,
            EventKind.UNHANDLED: self._handle_unhandled,
        }

    def reconcile(self, event: NormalizedEvent) -> ReconciliationResult:
        """
        Apply a single event to the subscription store.

        Raises:
            MissingCorrelation: Checkout completion without a user or subscription
            StorageError: Persistence failed; the delivery should be retried
            ProcessorLookupError: Subscription lookup failed; retry
        """
        handler = self._handlers.get(event.kind, self._handle_unhandled)
        try:
            result = handler(event)
        except OrphanSubscriptionEvent as exc:
            logger.warning("Acknowledging orphan event %s (%s): %s", event.event_id, event.source_type, exc)
            return ReconciliationResult(kind=event.kind, outcome=ReconciliationOutcome.ORPHAN)

        logger.info(
            "Reconciled %s event %s: %s (subscription=%s)",
            event.source_type,
            event.event_id,
            result.outcome.value,
            result.subscription.id if result.subscription else None,
        )
        return result

    # Handlers ---------------------------------------------------------------
    def _handle_checkout_completed(self, event: NormalizedEvent) -> ReconciliationResult:
        payload: CheckoutPayload = event.payload
        source = event.source_type or "checkout.session.completed"
        if payload.mode and payload.mode != "subscription":
            logger.info("Ignoring %s checkout session %s", payload.mode, payload.session_id)
            return ReconciliationResult(kind=event.kind, outcome=ReconciliationOutcome.IGNORED)
        if not payload.user_id:
            raise MissingCorrelation(source, "client_reference_id", event.event_id)
        if not payload.external_subscription_id:
            raise MissingCorrelation(source, "subscription", event.event_id)

        ext_id = payload.external_subscription_id
        details = self._fetch_subscription(ext_id)
        status = SubscriptionStatus.ACTIVE
        if details is not None and details.status in _LOOKUP_AUTHORITATIVE:
            status = details.status

        fields = SubscriptionFields(
            status=status,
            plan=payload.plan or (details.plan if details else None) or self._default_plan,
            external_customer_id=payload.external_customer_id or (details.external_customer_id if details else None),
            external_subscription_id=ext_id,
        )
        if details is not None:
            fields.current_period_start = details.current_period_start
            fields.current_period_end = details.current_period_end
            fields.cancel_at = details.cancel_at
            fields.cancel_at_period_end = details.cancel_at_period_end

        existing = self._repository.find_by_external_subscription_id(ext_id)
        if existing is not None:
            if existing.user_id != payload.user_id:
                logger.warning(
                    "Checkout %s names user %s but %s is tracked for user %s; keeping stored owner",
                    payload.session_id,
                    payload.user_id,
                    ext_id,
                    existing.user_id,
                )
            subscription = self._repository.upsert_by_external_subscription_id(
                ext_id, fields, user_id=payload.user_id
            )
            return self._result(event, existing, subscription, ext_id)

        before = self._repository.find_by_user_id(payload.user_id)
        subscription = self._repository.upsert_by_user_id(payload.user_id, fields)
        return self._result(event, before, subscription, ext_id)

    def _handle_subscription_upsert(self, event: NormalizedEvent) -> ReconciliationResult:
        payload: SubscriptionPayload = event.payload
        ext_id = payload.external_subscription_id
        if not ext_id:
            raise OrphanSubscriptionEvent(None)

        existing = self._repository.find_by_external_subscription_id(ext_id)
        if existing is None and not payload.user_id:
            raise OrphanSubscriptionEvent(ext_id)

        before = existing
        if before is None:
            before = self._repository.find_by_user_id(payload.user_id)

        subscription = self._repository.upsert_by_external_subscription_id(
            ext_id, self._fields_from_subscription(payload), user_id=payload.user_id
        )
        if subscription is None:
            raise OrphanSubscriptionEvent(ext_id)
        return self._result(event, before, subscription, ext_id)

    def _handle_subscription_deleted(self, event: NormalizedEvent) -> ReconciliationResult:
        payload: SubscriptionPayload = event.payload
        ext_id = payload.external_subscription_id
        if not ext_id:
            raise OrphanSubscriptionEvent(None)

        before = self._repository.find_by_external_subscription_id(ext_id)
        if before is None:
            logger.info("Deletion of untracked subscription %s ignored", ext_id)
            return ReconciliationResult(kind=event.kind, outcome=ReconciliationOutcome.UNTRACKED)

        subscription = self._repository.mark_canceled(ext_id, payload.canceled_at or self._clock())
        if subscription is None:
            return ReconciliationResult(kind=event.kind, outcome=ReconciliationOutcome.UNTRACKED)
        return self._result(event, before, subscription, ext_id)

    def _handle_invoice_paid(self, event: NormalizedEvent) -> ReconciliationResult:
        return self._apply_invoice(event, SubscriptionStatus.ACTIVE)

    def _handle_invoice_payment_failed(self, event: NormalizedEvent) -> ReconciliationResult:
        return self._apply_invoice(event, SubscriptionStatus.PAST_DUE)

    def _handle_unhandled(self, event: NormalizedEvent) -> ReconciliationResult:
        return ReconciliationResult(kind=EventKind.UNHANDLED, outcome=ReconciliationOutcome.IGNORED)

    # Helpers ----------------------------------------------------------------
    def _apply_invoice(self, event: NormalizedEvent, status: SubscriptionStatus) -> ReconciliationResult:
        payload: InvoicePayload = event.payload
        ext_id = payload.external_subscription_id
        if not ext_id:
            logger.info("Invoice %s is not tied to a subscription", payload.invoice_id)
            return ReconciliationResult(kind=event.kind, outcome=ReconciliationOutcome.NOT_SUBSCRIPTION)

        before = self._repository.find_by_external_subscription_id(ext_id)
        if before is None:
            logger.info("Invoice %s references untracked subscription %s", payload.invoice_id, ext_id)
            return ReconciliationResult(kind=event.kind, outcome=ReconciliationOutcome.UNTRACKED)

        subscription = self._repository.update_status_by_external_subscription_id(
            ext_id,
            status,
            current_period_start=payload.period_start,
            current_period_end=payload.period_end,
        )
        if subscription is None:
            return ReconciliationResult(kind=event.kind, outcome=ReconciliationOutcome.UNTRACKED)
        return self._result(event, before, subscription, ext_id)

    def _fetch_subscription(self, subscription_id: str) -> Optional[SubscriptionPayload]:
        if self._lookup is None:
            logger.warning("No processor lookup configured; %s stored without billing window", subscription_id)
            return None
        return subscription_payload_from_object(self._lookup.retrieve_subscription(subscription_id))

    @staticmethod
    def _fields_from_subscription(payload: SubscriptionPayload) -> SubscriptionFields:
        canceled = payload.status is SubscriptionStatus.CANCELED
        return SubscriptionFields(
            status=payload.status,
            plan=payload.plan,
            external_customer_id=payload.external_customer_id,
            external_subscription_id=payload.external_subscription_id,
            current_period_start=payload.current_period_start,
            current_period_end=payload.current_period_end,
            cancel_at=payload.cancel_at,
            canceled_at=payload.canceled_at if canceled else None,
            cancel_at_period_end=payload.cancel_at_period_end,
            clear_cancel_at=payload.has_cancel_at and payload.cancel_at is None,
        )

    @staticmethod
    def _result(
        event: NormalizedEvent,
        before: Optional[Subscription],
        after: Subscription,
        ext_id: str,
    ) -> ReconciliationResult:
        if after.external_subscription_id != ext_id:
            outcome = ReconciliationOutcome.SUPERSEDED
        elif before is None or before.id != after.id:
            outcome = ReconciliationOutcome.CREATED
        elif before == after:
            outcome = ReconciliationOutcome.UNCHANGED
        elif after.status is SubscriptionStatus.CANCELED and before.status is not SubscriptionStatus.CANCELED:
            outcome = ReconciliationOutcome.CANCELED
        else:
            outcome = ReconciliationOutcome.UPDATED
        return ReconciliationResult(kind=event.kind, outcome=outcome, subscription=after)
