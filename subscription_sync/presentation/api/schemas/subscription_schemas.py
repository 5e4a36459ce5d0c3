"""Pydantic schemas for subscription API endpoints."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ....domain.models import EntitlementStatus, Subscription


class CreateCheckoutSessionRequest(BaseModel):
    """Request schema for creating a checkout session."""

    plan: str = Field(..., description="Plan label stored on the subscription")
    price_id: Optional[str] = Field(None, description="Explicit Stripe price ID; defaults to the plan's configured price")
    return_url: Optional[str] = Field(None, description="Base URL the user is sent back to after checkout")


class CreateCheckoutSessionResponse(BaseModel):
    """Response schema for creating a checkout session."""

    checkout_url: str
    session_id: str


class VerifySessionRequest(BaseModel):
    session_id: str = Field(..., description="Stripe checkout session ID from the success redirect")


class PortalSessionRequest(BaseModel):
    return_url: Optional[str] = Field(None, description="URL the billing portal returns to")


class PortalSessionResponse(BaseModel):
    portal_url: str


class SubscriptionResponse(BaseModel):
    """Response schema for subscription data."""

    id: str
    status: str
    plan: Optional[str]
    external_subscription_id: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at: Optional[datetime]
    canceled_at: Optional[datetime]
    cancel_at_period_end: bool
    is_active: bool

    @classmethod
    def from_subscription(cls, subscription: Subscription, now: datetime) -> "SubscriptionResponse":
        return cls(
            id=subscription.id,
            status=subscription.status.value,
            plan=subscription.plan,
            external_subscription_id=subscription.external_subscription_id,
            current_period_start=subscription.current_period_start,
            current_period_end=subscription.current_period_end,
            cancel_at=subscription.cancel_at,
            canceled_at=subscription.canceled_at,
            cancel_at_period_end=subscription.cancel_at_period_end,
            is_active=subscription.is_entitling(now),
        )


class EntitlementResponse(BaseModel):
    entitled: bool
    state: str
    grace_expires_at: Optional[datetime] = None
    subscription: Optional[SubscriptionResponse] = None

    @classmethod
    def from_status(cls, status: EntitlementStatus, now: datetime) -> "EntitlementResponse":
        return cls(
            entitled=status.entitled,
            state=status.state.value,
            grace_expires_at=status.grace_expires_at,
            subscription=(
                SubscriptionResponse.from_subscription(status.subscription, now)
                if status.subscription
                else None
            ),
        )


class WebhookAcknowledgement(BaseModel):
    received: bool = True
    result: Dict[str, Any]
