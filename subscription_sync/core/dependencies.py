from fastapi import Depends, Request

from .container import ApplicationContainer


def get_container(request: Request) -> ApplicationContainer:
    container = getattr(request.app.state, "container", None)
    if not container:
        raise RuntimeError("Application container not initialised.")
    return container


def get_settings(container: ApplicationContainer = Depends(get_container)):
    return container.settings


def get_signature_verifier(container: ApplicationContainer = Depends(get_container)):
    return container.signature_verifier


def get_stripe_service(container: ApplicationContainer = Depends(get_container)):
    return container.stripe_service


def get_reconciliation_service(container: ApplicationContainer = Depends(get_container)):
    return container.reconciliation_service


def get_entitlement_service(container: ApplicationContainer = Depends(get_container)):
    return container.entitlement_service


def get_identity_service(container: ApplicationContainer = Depends(get_container)):
    return container.identity_service
