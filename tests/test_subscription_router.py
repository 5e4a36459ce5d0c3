from datetime import datetime, timedelta, timezone

from subscription_sync.domain.models import SubscriptionFields, SubscriptionStatus

from .helpers import PERIOD_START, bearer, event_body, sign, stripe_subscription


def _store(client, user_id="u1", status=SubscriptionStatus.ACTIVE, days_left=30, customer="cus_1"):
    now = datetime.now(timezone.utc)
    return client.container.subscription_repository.upsert_by_user_id(
        user_id,
        SubscriptionFields(
            status=status,
            plan="standard",
            external_customer_id=customer,
            external_subscription_id=f"sub_{user_id}",
            current_period_start=now - timedelta(days=1),
            current_period_end=now + timedelta(days=days_left),
        ),
    )


def test_requests_without_token_are_rejected(client):
    assert client.get("/api/subscription/current").status_code == 401
    assert client.get("/api/subscription/entitlement").status_code == 401


def test_invalid_token_is_rejected(client):
    response = client.get("/api/subscription/current", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["detail"] == "Invalid or expired token"


def test_current_without_subscription_is_null(client):
    response = client.get("/api/subscription/current", headers=bearer())

    assert response.status_code == 200
    assert response.json() is None


def test_current_returns_stored_subscription(client):
    stored = _store(client)

    response = client.get("/api/subscription/current", headers=bearer())

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == stored.id
    assert body["status"] == "active"
    assert body["external_subscription_id"] == "sub_u1"
    assert body["is_active"] is True


def test_entitlement_for_active_subscription(client):
    _store(client)

    body = client.get("/api/subscription/entitlement", headers=bearer()).json()

    assert body["entitled"] is True
    assert body["state"] == "entitled"
    assert body["subscription"]["plan"] == "standard"


def test_entitlement_for_lapsed_subscription(client):
    _store(client, days_left=-1)

    body = client.get("/api/subscription/entitlement", headers=bearer()).json()

    assert body["entitled"] is False
    assert body["state"] == "expired"


def test_entitlement_only_sees_callers_row(client):
    _store(client, user_id="u2")

    body = client.get("/api/subscription/entitlement", headers=bearer("u1")).json()

    assert body == {"entitled": False, "state": "none", "grace_expires_at": None, "subscription": None}


def test_checkout_creates_stripe_session(client, fake_stripe):
    response = client.post("/api/subscription/checkout", json={"plan": "standard"}, headers=bearer())

    assert response.status_code == 200
    assert response.json() == {"checkout_url": "https://checkout.stripe.test/cs_test_1", "session_id": "cs_test_1"}
    request = fake_stripe.created_sessions[0]
    assert request["user_id"] == "u1"
    assert request["user_email"] == "u1@example.com"
    assert request["plan"] == "standard"
    assert request["customer_id"] is None
    assert request["success_url"] == "https://app.example.com/payment-success?session_id={CHECKOUT_SESSION_ID}"
    assert request["cancel_url"] == "https://app.example.com/subscription?canceled=true"


def test_checkout_reuses_customer_after_cancellation(client, fake_stripe):
    _store(client, status=SubscriptionStatus.CANCELED, customer="cus_old")

    response = client.post("/api/subscription/checkout", json={"plan": "standard"}, headers=bearer())

    assert response.status_code == 200
    assert fake_stripe.created_sessions[0]["customer_id"] == "cus_old"


def test_checkout_rejected_when_already_entitled(client, fake_stripe):
    _store(client)

    response = client.post("/api/subscription/checkout", json={"plan": "standard"}, headers=bearer())

    assert response.status_code == 400
    assert fake_stripe.created_sessions == []


def test_verify_session_grants_grace(client, fake_stripe):
    fake_stripe.checkout_sessions["cs_1"] = {
        "id": "cs_1",
        "client_reference_id": "u1",
        "status": "complete",
        "payment_status": "paid",
    }

    response = client.post("/api/subscription/verify-session", json={"session_id": "cs_1"}, headers=bearer())

    assert response.status_code == 200
    body = response.json()
    assert body["entitled"] is True
    assert body["state"] == "grace"
    assert body["grace_expires_at"] is not None
    assert client.container.grace_repository.get_grace("u1").checkout_session_id == "cs_1"


def _post_webhook(client, body):
    headers = {"content-type": "application/json", "stripe-signature": sign(body)}
    assert client.post("/api/webhooks/stripe", content=body, headers=headers).status_code == 200


def test_verify_session_after_cancellation_grants_nothing(client, fake_stripe):
    session = {
        "id": "cs_old",
        "object": "checkout.session",
        "client_reference_id": "u1",
        "subscription": "sub_1",
        "customer": "cus_1",
        "mode": "subscription",
        "status": "complete",
        "payment_status": "paid",
        "created": PERIOD_START,
    }
    fake_stripe.checkout_sessions["cs_old"] = session
    _post_webhook(client, event_body("checkout.session.completed", session))
    _post_webhook(
        client,
        event_body("customer.subscription.deleted", stripe_subscription(status="canceled"), event_id="evt_2"),
    )

    response = client.post("/api/subscription/verify-session", json={"session_id": "cs_old"}, headers=bearer())

    assert response.status_code == 200
    body = response.json()
    assert body["entitled"] is False
    assert body["state"] == "canceled"
    assert body["grace_expires_at"] is None
    assert client.container.grace_repository.get_grace("u1") is None


def test_verify_session_older_than_grace_window_grants_nothing(client, fake_stripe):
    fake_stripe.checkout_sessions["cs_1"] = {
        "id": "cs_1",
        "client_reference_id": "u1",
        "subscription": "sub_2",
        "status": "complete",
        "payment_status": "paid",
        "created": int((datetime.now(timezone.utc) - timedelta(days=2)).timestamp()),
    }

    response = client.post("/api/subscription/verify-session", json={"session_id": "cs_1"}, headers=bearer())

    assert response.status_code == 200
    assert response.json()["entitled"] is False
    assert response.json()["state"] == "none"
    assert client.container.grace_repository.get_grace("u1") is None


def test_verify_session_of_another_user_is_forbidden(client, fake_stripe):
    fake_stripe.checkout_sessions["cs_1"] = {
        "id": "cs_1",
        "client_reference_id": "u2",
        "status": "complete",
        "payment_status": "paid",
    }

    response = client.post("/api/subscription/verify-session", json={"session_id": "cs_1"}, headers=bearer("u1"))

    assert response.status_code == 403
    assert client.container.grace_repository.get_grace("u1") is None


def test_verify_unpaid_session_conflicts(client, fake_stripe):
    fake_stripe.checkout_sessions["cs_1"] = {
        "id": "cs_1",
        "client_reference_id": "u1",
        "status": "open",
        "payment_status": "unpaid",
    }

    response = client.post("/api/subscription/verify-session", json={"session_id": "cs_1"}, headers=bearer())

    assert response.status_code == 409


def test_verify_unknown_session_is_bad_request(client):
    response = client.post("/api/subscription/verify-session", json={"session_id": "cs_missing"}, headers=bearer())

    assert response.status_code == 400


def test_portal_without_subscription_is_not_found(client):
    response = client.post("/api/subscription/portal", json={}, headers=bearer())

    assert response.status_code == 404


def test_portal_opens_for_customer(client, fake_stripe):
    _store(client)

    response = client.post("/api/subscription/portal", json={}, headers=bearer())

    assert response.status_code == 200
    assert response.json() == {"portal_url": "https://billing.stripe.test/cus_1"}
    assert fake_stripe.portal_requests == [
        {"customer": "cus_1", "return_url": "https://app.example.com/dashboard"}
    ]
