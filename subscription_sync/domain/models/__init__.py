"""Domain models for the subscription reconciliation service."""

from .entitlement import EntitlementState, EntitlementStatus, PaymentGrace
from .events import (
    CheckoutPayload,
    EventKind,
    InvoicePayload,
    NormalizedEvent,
    ReconciliationOutcome,
    ReconciliationResult,
    SubscriptionPayload,
    VerifiedEvent,
)
from .subscription import (
    ENTITLING_STATUSES,
    Subscription,
    SubscriptionFields,
    SubscriptionStatus,
)

__all__ = [
    "CheckoutPayload",
    "ENTITLING_STATUSES",
    "EntitlementState",
    "EntitlementStatus",
    "EventKind",
    "InvoicePayload",
    "NormalizedEvent",
    "PaymentGrace",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "Subscription",
    "SubscriptionFields",
    "SubscriptionPayload",
    "SubscriptionStatus",
    "VerifiedEvent",
]
