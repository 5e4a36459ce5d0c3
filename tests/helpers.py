from __future__ import annotations

import hashlib
import hmac
import json
import sqlite3
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt

from subscription_sync.domain.errors import ProcessorLookupError

WEBHOOK_SECRET = "whsec_test"
JWT_SECRET = "jwt-test-secret"

PERIOD_START = 1_760_000_000
PERIOD_END = PERIOD_START + 30 * 24 * 3600
NEXT_PERIOD_END = PERIOD_END + 30 * 24 * 3600


def utc(timestamp: int) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), msg=signed_payload, digestmod=hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def event_body(event_type: str, obj: Dict[str, Any], event_id: str = "evt_test_1") -> bytes:
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": PERIOD_START,
            "data": {"object": obj},
        }
    ).encode()


def stripe_subscription(
    subscription_id: str = "sub_1",
    status: str = "active",
    start: int = PERIOD_START,
    end: int = PERIOD_END,
    customer: str = "cus_1",
    metadata: Optional[Dict[str, str]] = None,
    **extra: Any,
) -> Dict[str, Any]:
    obj = {
        "id": subscription_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "current_period_start": start,
        "current_period_end": end,
        "cancel_at_period_end": False,
        "cancel_at": None,
        "canceled_at": None,
        "metadata": metadata or {},
        "items": {"data": [{"price": {"id": "price_basic", "lookup_key": None}}]},
    }
    obj.update(extra)
    return obj


def count_rows(db_path) -> int:
    with sqlite3.connect(db_path) as conn:
        return conn.execute("SELECT COUNT(*) FROM subscriptions").fetchone()[0]


def bearer(user_id: str = "u1", email: Optional[str] = "u1@example.com") -> Dict[str, str]:
    token = jwt.encode(
        {"sub": user_id, "email": email, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
        JWT_SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


class Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int = 1) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeStripeService:
    is_configured = True

    def __init__(self) -> None:
        self.subscriptions: Dict[str, Dict[str, Any]] = {"sub_1": stripe_subscription()}
        self.checkout_sessions: Dict[str, Dict[str, Any]] = {}
        self.created_sessions: List[Dict[str, Any]] = []
        self.portal_requests: List[Dict[str, str]] = []
        self.fail_lookups = False

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        if self.fail_lookups:
            raise ProcessorLookupError(f"Failed to retrieve subscription {subscription_id}: timeout")
        return self.subscriptions.get(subscription_id) or stripe_subscription(subscription_id)

    def create_checkout_session(self, **kwargs: Any) -> Dict[str, Any]:
        self.created_sessions.append(kwargs)
        session_id = f"cs_test_{len(self.created_sessions)}"
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def retrieve_checkout_session(self, session_id: str) -> Dict[str, Any]:
        if session_id not in self.checkout_sessions:
            raise ValueError(f"Unknown checkout session: {session_id}")
        return self.checkout_sessions[session_id]

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        self.portal_requests.append({"customer": customer_id, "return_url": return_url})
        return f"https://billing.stripe.test/{customer_id}"
