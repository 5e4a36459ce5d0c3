"""Mapping of verified processor events onto the closed set of event kinds."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..domain.models import (
    CheckoutPayload,
    EventKind,
    InvoicePayload,
    NormalizedEvent,
    SubscriptionPayload,
    SubscriptionStatus,
    VerifiedEvent,
)

logger = logging.getLogger(__name__)

EVENT_KINDS: Dict[str, EventKind] = {
    "checkout.session.completed": EventKind.CHECKOUT_COMPLETED,
    "customer.subscription.created": EventKind.SUBSCRIPTION_CREATED,
    "customer.subscription.updated": EventKind.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventKind.SUBSCRIPTION_DELETED,
    "invoice.paid": EventKind.INVOICE_PAID,
    "invoice.payment_succeeded": EventKind.INVOICE_PAID,
    "invoice.payment_failed": EventKind.INVOICE_PAYMENT_FAILED,
}


def normalize(verified: VerifiedEvent) -> NormalizedEvent:
    kind = EVENT_KINDS.get(verified.type, EventKind.UNHANDLED)
    if kind is EventKind.UNHANDLED:
        logger.debug("No handler for event type %s (%s)", verified.type, verified.id)
        payload = None
    else:
        payload = _EXTRACTORS[kind](verified.data_object)
    return NormalizedEvent(
        kind=kind,
        payload=payload,
        event_id=verified.id,
        source_type=verified.type,
        created=verified.created,
    )


def checkout_payload_from_object(session: Dict[str, Any]) -> CheckoutPayload:
    metadata = _metadata(session)
    return CheckoutPayload(
        session_id=_string(session.get("id")),
        user_id=_string(session.get("client_reference_id")) or _string(metadata.get("user_id")),
        external_subscription_id=_reference(session.get("subscription")),
        external_customer_id=_reference(session.get("customer")),
        plan=_string(metadata.get("plan")),
        mode=_string(session.get("mode")),
        payment_status=_string(session.get("payment_status")),
        created=_timestamp(session.get("created")),
    )


def subscription_payload_from_object(subscription: Dict[str, Any]) -> SubscriptionPayload:
    """Extract the reconciled fields from a processor subscription object.

    Newer API versions report the billing window per item rather than on the
    subscription, so the first item is consulted when the top-level fields are
    absent.
    """
    metadata = _metadata(subscription)
    first_item = _first(subscription.get("items"))
    period_start = subscription.get("current_period_start") or first_item.get("current_period_start")
    period_end = subscription.get("current_period_end") or first_item.get("current_period_end")
    cancel_at_period_end = subscription.get("cancel_at_period_end")

    return SubscriptionPayload(
        external_subscription_id=_string(subscription.get("id")),
        external_customer_id=_reference(subscription.get("customer")),
        user_id=_string(metadata.get("user_id")),
        status=SubscriptionStatus.from_processor(_string(subscription.get("status"))),
        plan=_string(metadata.get("plan")) or _plan_from_item(first_item),
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        cancel_at=_timestamp(subscription.get("cancel_at")),
        canceled_at=_timestamp(subscription.get("canceled_at")),
        cancel_at_period_end=cancel_at_period_end if isinstance(cancel_at_period_end, bool) else None,
        has_cancel_at="cancel_at" in subscription,
    )


def invoice_payload_from_object(invoice: Dict[str, Any]) -> InvoicePayload:
    subscription_ref = _reference(invoice.get("subscription"))
    if subscription_ref is None:
        parent = invoice.get("parent")
        details = parent.get("subscription_details") if isinstance(parent, dict) else None
        if isinstance(details, dict):
            subscription_ref = _reference(details.get("subscription"))

    period = _first(invoice.get("lines")).get("period")
    period = period if isinstance(period, dict) else {}
    return InvoicePayload(
        invoice_id=_string(invoice.get("id")),
        external_subscription_id=subscription_ref,
        external_customer_id=_reference(invoice.get("customer")),
        period_start=_timestamp(period.get("start")),
        period_end=_timestamp(period.get("end")),
    )


_EXTRACTORS: Dict[EventKind, Callable[[Dict[str, Any]], Any]] = {
    EventKind.CHECKOUT_COMPLETED: checkout_payload_from_object,
    EventKind.SUBSCRIPTION_CREATED: subscription_payload_from_object,
    EventKind.SUBSCRIPTION_UPDATED: subscription_payload_from_object,
    EventKind.SUBSCRIPTION_DELETED: subscription_payload_from_object,
    EventKind.INVOICE_PAID: invoice_payload_from_object,
    EventKind.INVOICE_PAYMENT_FAILED: invoice_payload_from_object,
}


# Field helpers ---------------------------------------------------------------
def _string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _reference(value: Any) -> Optional[str]:
    """Accept both an ID string and an expanded object carrying an ``id``."""
    if isinstance(value, dict):
        return _string(value.get("id"))
    return _string(value)


def _metadata(obj: Dict[str, Any]) -> Dict[str, Any]:
    metadata = obj.get("metadata")
    return metadata if isinstance(metadata, dict) else {}


def _first(collection: Any) -> Dict[str, Any]:
    if isinstance(collection, dict):
        data = collection.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            return data[0]
    return {}


def _plan_from_item(item: Dict[str, Any]) -> Optional[str]:
    price = item.get("price")
    if not isinstance(price, dict):
        return None
    return _string(price.get("lookup_key")) or _string(price.get("id"))


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)
