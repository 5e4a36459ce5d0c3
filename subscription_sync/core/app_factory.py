from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings
from .container import ApplicationContainer
from .logging import configure_logging
from ..infrastructure.repositories.grace_repository import SQLitePaymentGraceRepository
from ..infrastructure.repositories.subscription_repository import SQLiteSubscriptionRepository
from ..presentation.api.routers import subscription_router
from ..presentation.api.routers import webhook_router
from ..services.entitlement_service import EntitlementService
from ..services.identity_service import IdentityService
from ..services.reconciliation_service import ReconciliationService
from ..services.signature_verifier import SignatureVerifier
from ..services.stripe_service import StripeService

logger = logging.getLogger(__name__)


def create_application(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()

    app = FastAPI(title="Subscription Sync", lifespan=_create_lifespan(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(webhook_router.router)
    app.include_router(subscription_router.router)

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        container: ApplicationContainer = app.state.container  # type: ignore[attr-defined]
        return {
            "ok": True,
            "webhook_configured": container.signature_verifier.is_configured,
            "stripe_configured": container.stripe_service.is_configured,
        }

    return app


def build_container(settings: Settings) -> ApplicationContainer:
    subscription_repository = SQLiteSubscriptionRepository(settings.database_path)
    grace_repository = SQLitePaymentGraceRepository(settings.database_path)
    stripe_service = StripeService(
        secret_key=settings.stripe_secret_key,
        price_ids=settings.stripe_price_ids,
        default_price_id=settings.stripe_default_price_id,
    )
    reconciliation_service = ReconciliationService(
        subscription_repository,
        subscription_lookup=stripe_service if stripe_service.is_configured else None,
        default_plan=settings.default_plan,
    )
    entitlement_service = EntitlementService(
        subscription_repository,
        grace_repository,
        grace_seconds=settings.payment_grace_seconds,
    )

    return ApplicationContainer(
        settings=settings,
        subscription_repository=subscription_repository,
        grace_repository=grace_repository,
        signature_verifier=SignatureVerifier(
            settings.stripe_webhook_secret, settings.stripe_webhook_tolerance
        ),
        stripe_service=stripe_service,
        reconciliation_service=reconciliation_service,
        entitlement_service=entitlement_service,
        identity_service=IdentityService(
            jwt_secret=settings.auth_jwt_secret,
            jwt_algorithm=settings.auth_jwt_algorithm,
            audience=settings.auth_jwt_audience,
        ),
    )


def _create_lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging()
        container = getattr(app.state, "container", None) or build_container(settings)
        app.state.container = container  # type: ignore[attr-defined]

        if not container.signature_verifier.is_configured:
            logger.warning("STRIPE_WEBHOOK_SECRET is not set; webhook deliveries will be rejected")
        if not container.stripe_service.is_configured:
            logger.warning("STRIPE_SECRET_KEY is not set; checkout and subscription lookups are disabled")

        logger.info("Subscription store at %s", settings.database_path)
        yield

    return lifespan
