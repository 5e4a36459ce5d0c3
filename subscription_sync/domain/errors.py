"""Error taxonomy for webhook verification and subscription reconciliation."""

from __future__ import annotations

from typing import Optional


class ReconciliationError(Exception):
    """Base class for every error raised by the reconciliation core."""


class VerificationError(ReconciliationError):
    """The inbound payload could not be authenticated. Never retried."""


class SignatureMismatch(VerificationError):
    pass


class MalformedSignatureHeader(SignatureMismatch):
    pass


class StaleTimestamp(VerificationError):
    def __init__(self, timestamp: int, now: float, tolerance: int) -> None:
        super().__init__(
            f"Signature timestamp {timestamp} is outside the {tolerance}s tolerance window"
        )
        self.timestamp = timestamp
        self.now = now
        self.tolerance = tolerance


class InvalidPayload(VerificationError):
    pass


class MissingCorrelation(ReconciliationError):
    """An event lacks the identifiers needed to attach it to a user."""

    def __init__(self, event_type: str, missing: str, event_id: Optional[str] = None) -> None:
        super().__init__(f"{event_type} event {event_id or '?'} is missing {missing}")
        self.event_type = event_type
        self.missing = missing
        self.event_id = event_id


class OrphanSubscriptionEvent(ReconciliationError):
    """A subscription event references an object no user can be attached to."""

    def __init__(self, external_subscription_id: Optional[str]) -> None:
        super().__init__(
            f"No local subscription or metadata user_id for {external_subscription_id}"
        )
        self.external_subscription_id = external_subscription_id


class StorageError(ReconciliationError):
    """Transient persistence failure. Retryable."""


class ProcessorLookupError(ReconciliationError):
    """The payment processor API call failed. Retryable."""
