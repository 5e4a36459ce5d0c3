from dataclasses import dataclass

from .config import Settings
from ..domain.ports.persistence import PaymentGraceRepository, SubscriptionRepository
from ..services.entitlement_service import EntitlementService
from ..services.identity_service import IdentityService
from ..services.reconciliation_service import ReconciliationService
from ..services.signature_verifier import SignatureVerifier
from ..services.stripe_service import StripeService


@dataclass(slots=True)
class ApplicationContainer:
    """Dependency registry shared across the FastAPI application lifecycle.

    Holds only stateless services and configuration; nothing here is mutated
    per request.
    """

    settings: Settings
    subscription_repository: SubscriptionRepository
    grace_repository: PaymentGraceRepository
    signature_verifier: SignatureVerifier
    stripe_service: StripeService
    reconciliation_service: ReconciliationService
    entitlement_service: EntitlementService
    identity_service: IdentityService
