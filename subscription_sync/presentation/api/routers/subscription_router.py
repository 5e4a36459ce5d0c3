"""API router for the signed-in user's subscription and entitlement."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from ....core.config import Settings
from ....core.dependencies import get_entitlement_service, get_settings, get_stripe_service
from ....domain.errors import ProcessorLookupError
from ....services.entitlement_service import EntitlementService
from ....services.event_normalizer import checkout_payload_from_object
from ....services.identity_service import Principal
from ....services.stripe_service import StripeService
from ..dependencies import require_user
from ..schemas.subscription_schemas import (
    CreateCheckoutSessionRequest,
    CreateCheckoutSessionResponse,
    EntitlementResponse,
    PortalSessionRequest,
    PortalSessionResponse,
    SubscriptionResponse,
    VerifySessionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["subscription"])

_PAID_STATUSES = ("paid", "no_payment_required")


def _now() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/current", response_model=Optional[SubscriptionResponse])
def get_current_subscription(
    user: Principal = Depends(require_user),
    entitlement_service: EntitlementService = Depends(get_entitlement_service),
) -> Optional[SubscriptionResponse]:
    """Get current user subscription."""
    subscription = entitlement_service.get_subscription(user.user_id)
    if not subscription:
        return None
    return SubscriptionResponse.from_subscription(subscription, _now())


@router.get("/entitlement", response_model=EntitlementResponse)
def get_entitlement(
    user: Principal = Depends(require_user),
    entitlement_service: EntitlementService = Depends(get_entitlement_service),
) -> EntitlementResponse:
    """Report whether the caller may access gated content."""
    now = _now()
    return EntitlementResponse.from_status(entitlement_service.resolve(user.user_id, now=now), now)


@router.post("/checkout", response_model=CreateCheckoutSessionResponse)
def create_checkout_session(
    request: CreateCheckoutSessionRequest,
    user: Principal = Depends(require_user),
    entitlement_service: EntitlementService = Depends(get_entitlement_service),
    stripe_service: StripeService = Depends(get_stripe_service),
    settings: Settings = Depends(get_settings),
) -> CreateCheckoutSessionResponse:
    """Create a Stripe checkout session for subscription."""
    existing = entitlement_service.get_subscription(user.user_id)
    if existing and existing.is_entitling(_now()):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already has an active subscription",
        )

    base_url = (request.return_url or settings.frontend_base_url).rstrip("/")
    try:
        session = stripe_service.create_checkout_session(
            user_id=user.user_id,
            user_email=user.email,
            plan=request.plan,
            price_id=request.price_id,
            customer_id=existing.external_customer_id if existing else None,
            success_url=f"{base_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base_url}/subscription?canceled=true",
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return CreateCheckoutSessionResponse(checkout_url=session["url"], session_id=session["id"])


@router.post("/verify-session", response_model=EntitlementResponse)
def verify_checkout_session(
    request: VerifySessionRequest,
    user: Principal = Depends(require_user),
    entitlement_service: EntitlementService = Depends(get_entitlement_service),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> EntitlementResponse:
    """Confirm a checkout redirect with Stripe and bridge the webhook delay."""
    try:
        session = stripe_service.retrieve_checkout_session(request.session_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ProcessorLookupError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    checkout = checkout_payload_from_object(session)
    if checkout.user_id != user.user_id:
        logger.warning("User %s tried to verify checkout session %s owned by another user", user.user_id, request.session_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Checkout session does not belong to this user")

    if session.get("status") != "complete" or checkout.payment_status not in _PAID_STATUSES:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Payment was not successful")

    now = _now()
    entitlement_service.grant_grace(
        user.user_id,
        checkout_session_id=request.session_id,
        external_subscription_id=checkout.external_subscription_id,
        session_created_at=checkout.created,
        now=now,
    )
    return EntitlementResponse.from_status(entitlement_service.resolve(user.user_id, now=now), now)


@router.post("/portal", response_model=PortalSessionResponse)
def create_portal_session(
    request: PortalSessionRequest,
    user: Principal = Depends(require_user),
    entitlement_service: EntitlementService = Depends(get_entitlement_service),
    stripe_service: StripeService = Depends(get_stripe_service),
    settings: Settings = Depends(get_settings),
) -> PortalSessionResponse:
    """Open the Stripe billing portal for the caller's customer record."""
    subscription = entitlement_service.get_subscription(user.user_id)
    if not subscription or not subscription.external_customer_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No subscription found")

    try:
        portal_url = stripe_service.create_portal_session(
            subscription.external_customer_id,
            request.return_url or f"{settings.frontend_base_url}/dashboard",
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except ProcessorLookupError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return PortalSessionResponse(portal_url=portal_url)
