"""Stripe payment integration service."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe

from ..domain.errors import ProcessorLookupError

logger = logging.getLogger(__name__)


def _to_dict(obj: Any) -> Dict[str, Any]:
    """Convert a StripeObject (or plain mapping) into nested plain dicts."""
    if type(obj) is dict:
        return obj
    for name in ("to_dict_recursive", "to_dict"):
        converter = getattr(obj, name, None)
        if callable(converter):
            return converter()
    return dict(obj)


class StripeService:
    """Manages the Stripe API calls the reconciliation core depends on.

    The API key is passed on every request instead of being assigned to the
    ``stripe`` module, so several instances can coexist in one process.
    """

    def __init__(
        self,
        secret_key: Optional[str],
        price_ids: Optional[Dict[str, str]] = None,
        default_price_id: Optional[str] = None,
    ) -> None:
        self._secret_key = secret_key
        self._price_ids = dict(price_ids or {})
        self._default_price_id = default_price_id

    @property
    def is_configured(self) -> bool:
        return bool(self._secret_key)

    def _require_key(self) -> str:
        if not self._secret_key:
            raise ValueError("Stripe not configured. Please set STRIPE_SECRET_KEY first.")
        return self._secret_key

    def price_for_plan(self, plan: Optional[str], price_id: Optional[str] = None) -> str:
        """Resolve the Stripe price for a plan label."""
        if price_id:
            return price_id
        if plan and plan in self._price_ids:
            return self._price_ids[plan]
        if self._default_price_id:
            return self._default_price_id
        raise ValueError(f"No Stripe price configured for plan '{plan}'")

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """
        Fetch the full subscription object for a thin webhook payload.

        Raises:
            ProcessorLookupError: If Stripe cannot be reached or rejects the call
        """
        if not self._secret_key:
            raise ProcessorLookupError("Stripe not configured; cannot look up subscription")

        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=self._secret_key)
        except stripe.StripeError as exc:
            logger.error("Failed to retrieve subscription %s: %s", subscription_id, exc)
            raise ProcessorLookupError(f"Failed to retrieve subscription {subscription_id}: {exc}") from exc
        return _to_dict(subscription)

    def create_checkout_session(
        self,
        user_id: str,
        user_email: Optional[str],
        plan: str,
        success_url: str,
        cancel_url: str,
        price_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a Stripe checkout session for a subscription.

        ``client_reference_id`` and ``metadata`` carry the user and plan so the
        webhook path can correlate the resulting events.

        Returns:
            Mapping with the session ``id`` and redirect ``url``

        Raises:
            ValueError: If Stripe is not configured or rejects the request
        """
        api_key = self._require_key()
        correlation = {"user_id": user_id, "plan": plan}
        params: Dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": self.price_for_plan(plan, price_id), "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata": correlation,
            "subscription_data": {"metadata": correlation},
        }
        if customer_id:
            params["customer"] = customer_id
        elif user_email:
            params["customer_email"] = user_email

        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params)
        except stripe.StripeError as exc:
            logger.error("Failed to create checkout session for user %s: %s", user_id, exc)
            raise ValueError(f"Failed to create checkout session: {exc}") from exc

        logger.info("Created checkout session %s for user %s (plan=%s)", session.id, user_id, plan)
        return {"id": session.id, "url": session.url}

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        api_key = self._require_key()
        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=api_key)
        except stripe.InvalidRequestError as exc:
            raise ValueError(f"Unknown checkout session: {session_id}") from exc
        except stripe.StripeError as exc:
            logger.error("Failed to retrieve checkout session %s: %s", session_id, exc)
            raise ProcessorLookupError(f"Failed to retrieve checkout session: {exc}") from exc
        return _to_dict(session)

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a billing portal session and return its URL."""
        api_key = self._require_key()
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=return_url,
                api_key=api_key,
            )
        except stripe.StripeError as exc:
            logger.error("Failed to create portal session for %s: %s", customer_id, exc)
            raise ProcessorLookupError(f"Failed to create portal session: {exc}") from exc

        logger.info("Created portal session for customer %s", customer_id)
        return session.url
