from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from subscription_sync.core.app_factory import build_container, create_application
from subscription_sync.core.config import Settings
from subscription_sync.infrastructure.repositories.grace_repository import SQLitePaymentGraceRepository
from subscription_sync.infrastructure.repositories.subscription_repository import (
    SQLiteSubscriptionRepository,
)
from subscription_sync.services.reconciliation_service import ReconciliationService

from .helpers import JWT_SECRET, WEBHOOK_SECRET, Clock, FakeStripeService


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "subscriptions.db"


@pytest.fixture
def clock():
    return Clock(datetime(2025, 10, 20, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository(db_path, clock):
    return SQLiteSubscriptionRepository(db_path, clock=clock)


@pytest.fixture
def grace_repository(db_path):
    return SQLitePaymentGraceRepository(db_path)


@pytest.fixture
def fake_stripe():
    return FakeStripeService()


@pytest.fixture
def reconciliation(repository, fake_stripe, clock):
    return ReconciliationService(repository, subscription_lookup=fake_stripe, clock=clock)


@pytest.fixture
def settings(monkeypatch, db_path):
    monkeypatch.setenv("DATABASE_PATH", str(db_path))
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://app.example.com")
    monkeypatch.setenv("STRIPE_PRICE_IDS", "standard=price_basic")
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    monkeypatch.delenv("AUTH_JWT_AUDIENCE", raising=False)
    return Settings()


@pytest.fixture
def client(settings, fake_stripe):
    app = create_application(settings)
    container = build_container(settings)
    container.stripe_service = fake_stripe
    container.reconciliation_service = ReconciliationService(
        container.subscription_repository,
        subscription_lookup=fake_stripe,
        default_plan=settings.default_plan,
    )
    app.state.container = container
    with TestClient(app) as test_client:
        test_client.container = container
        yield test_client
