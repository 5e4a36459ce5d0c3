"""Inbound payment processor webhook endpoint."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ....core.dependencies import get_reconciliation_service, get_signature_verifier
from ....domain.errors import (
    MissingCorrelation,
    ProcessorLookupError,
    StorageError,
    VerificationError,
)
from ..schemas.subscription_schemas import WebhookAcknowledgement
from ....services.event_normalizer import normalize
from ....services.reconciliation_service import ReconciliationService
from ....services.signature_verifier import SignatureVerifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])

SIGNATURE_HEADER = "stripe-signature"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@router.post("/stripe", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    verifier: SignatureVerifier = Depends(get_signature_verifier),
    reconciliation_service: ReconciliationService = Depends(get_reconciliation_service),
) -> Any:
    """Verify, normalize and reconcile a Stripe event.

    200 acknowledges (including ignored and orphan events), 400 rejects a
    payload that failed verification, 500 asks Stripe to redeliver.
    """
    if not verifier.is_configured:
        logger.error("Webhook delivery received but no signing secret is configured")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Webhook signing secret not configured")

    payload = await request.body()
    try:
        verified = verifier.verify(payload, request.headers.get(SIGNATURE_HEADER))
    except VerificationError as exc:
        logger.warning("Rejected webhook delivery: %s", exc)
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    try:
        event = normalize(verified)
        result = await run_in_threadpool(reconciliation_service.reconcile, event)
    except MissingCorrelation as exc:
        logger.error("Event %s (%s) cannot be correlated: %s", verified.id, verified.type, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    except (StorageError, ProcessorLookupError) as exc:
        logger.warning("Retryable failure for event %s (%s): %s", verified.id, verified.type, exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
    except Exception:
        logger.exception("Unexpected failure reconciling event %s (%s)", verified.id, verified.type)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal error while processing event")

    return WebhookAcknowledgement(result=result.to_dict())
