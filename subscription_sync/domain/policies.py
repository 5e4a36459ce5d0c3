"""Merge rules applied when a processor event is folded into a stored subscription.

Delivery is at-least-once and unordered, so the only ordering signal is the
billing window itself: an event describing a window that ends before the stored
one is stale. ``canceled`` is terminal for a given processor subscription and
always wins over any other status.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .models.subscription import Subscription, SubscriptionFields, SubscriptionStatus

_WINDOW_FIELDS = ("current_period_start", "current_period_end")
_FILL_ONLY_WHEN_STALE = ("plan", "external_customer_id")


@dataclass(slots=True)
class MergeDecision:
    changes: Dict[str, Any] = field(default_factory=dict)
    stale: bool = False
    superseded: bool = False


def window_is_later(stored_end: Optional[datetime], incoming_end: Optional[datetime]) -> bool:
    """True when ``incoming_end`` strictly extends the stored billing window."""
    if stored_end is None:
        return True
    if incoming_end is None:
        return False
    return incoming_end > stored_end


def is_stale(stored_end: Optional[datetime], incoming_end: Optional[datetime]) -> bool:
    return stored_end is not None and incoming_end is not None and incoming_end < stored_end


def merge_fields(existing: Subscription, incoming: SubscriptionFields) -> MergeDecision:
    """Compute the column changes ``incoming`` should apply to ``existing``.

    Values equal to what is already stored are left out, so replaying an event
    yields an empty change set.
    """
    incoming_ext = incoming.external_subscription_id
    if incoming_ext and existing.external_subscription_id not in (None, incoming_ext):
        return _merge_new_subscription(existing, incoming)

    supplied = incoming.supplied()
    stale = is_stale(existing.current_period_end, incoming.current_period_end)
    changes: Dict[str, Any] = {}

    if incoming_ext and existing.external_subscription_id is None:
        changes["external_subscription_id"] = incoming_ext

    status = incoming.status
    if status is SubscriptionStatus.CANCELED:
        changes["status"] = status
    elif status is not None and existing.status is not SubscriptionStatus.CANCELED and not stale:
        changes["status"] = status

    if stale:
        for name in _FILL_ONLY_WHEN_STALE:
            if getattr(existing, name) is None and name in supplied:
                changes[name] = supplied[name]
    else:
        for name in _WINDOW_FIELDS + _FILL_ONLY_WHEN_STALE + ("cancel_at", "cancel_at_period_end"):
            if name in supplied:
                changes[name] = supplied[name]
        if incoming.clear_cancel_at and incoming.cancel_at is None:
            changes["cancel_at"] = None

    if existing.canceled_at is None and incoming.canceled_at is not None:
        changes["canceled_at"] = incoming.canceled_at

    return MergeDecision(changes=_diff(existing, changes), stale=stale)


def _merge_new_subscription(existing: Subscription, incoming: SubscriptionFields) -> MergeDecision:
    """Re-key a user's row to a different processor subscription.

    Allowed when the stored subscription has ended (canceled) or the incoming
    window runs strictly later. A canceled subscription never takes a row over.
    """
    if incoming.status is SubscriptionStatus.CANCELED:
        return MergeDecision(superseded=True)
    if existing.status is not SubscriptionStatus.CANCELED and not window_is_later(
        existing.current_period_end, incoming.current_period_end
    ):
        return MergeDecision(superseded=True)

    changes = incoming.supplied()
    changes.setdefault("cancel_at", None)
    changes.setdefault("canceled_at", None)
    changes.setdefault("cancel_at_period_end", False)
    for name in _WINDOW_FIELDS:
        changes.setdefault(name, None)
    return MergeDecision(changes=_diff(existing, changes))


def insert_values(incoming: SubscriptionFields) -> Dict[str, Any]:
    values = incoming.supplied()
    values.setdefault("status", SubscriptionStatus.ACTIVE)
    values.setdefault("cancel_at_period_end", False)
    return values


def _diff(existing: Subscription, changes: Dict[str, Any]) -> Dict[str, Any]:
    return {name: value for name, value in changes.items() if getattr(existing, name) != value}
