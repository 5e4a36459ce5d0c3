"""Verification of processor webhook signatures.

Header format: ``t=<unix_ts>,v1=<hex_hmac>[,v1=<hex_hmac>...]``. The digest
check is delegated to the Stripe SDK; the timestamp tolerance is enforced here
against an injectable clock.
"""

from __future__ import annotations

import json
import time
from typing import List, Optional, Tuple, Union

import stripe

from ..domain.errors import (
    InvalidPayload,
    MalformedSignatureHeader,
    SignatureMismatch,
    StaleTimestamp,
)
from ..domain.models import VerifiedEvent

SIGNATURE_SCHEME = "v1"
DEFAULT_TOLERANCE_SECONDS = 300


def parse_signature_header(header: Optional[str]) -> Tuple[int, List[str]]:
    if not header:
        raise MalformedSignatureHeader("Missing signature header")

    timestamp: Optional[int] = None
    signatures: List[str] = []
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise MalformedSignatureHeader("Signature timestamp is not an integer") from exc
        elif key == SIGNATURE_SCHEME and value:
            signatures.append(value)

    if timestamp is None:
        raise MalformedSignatureHeader("Signature header has no timestamp")
    if not signatures:
        raise MalformedSignatureHeader(f"Signature header has no {SIGNATURE_SCHEME} signature")
    return timestamp, signatures


def verify(
    raw_body: Union[str, bytes],
    signature_header: Optional[str],
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> VerifiedEvent:
    """Authenticate ``raw_body`` and parse it into a ``VerifiedEvent``.

    Raises a ``VerificationError`` subclass for every failure mode, including
    malformed headers and bodies.
    """
    if isinstance(raw_body, bytes):
        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidPayload("Webhook body is not valid UTF-8") from exc
    else:
        payload = raw_body

    timestamp, _ = parse_signature_header(signature_header)
    try:
        stripe.WebhookSignature.verify_header(payload, signature_header, secret, tolerance=None)
    except stripe.SignatureVerificationError as exc:
        raise SignatureMismatch(str(exc)) from exc

    current = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        raise StaleTimestamp(timestamp, current, tolerance_seconds)

    return parse_event(payload)


def parse_event(raw_body: Union[str, bytes]) -> VerifiedEvent:
    try:
        body = json.loads(raw_body)
    except ValueError as exc:
        raise InvalidPayload(f"Webhook body is not valid JSON: {exc}") from exc

    if not isinstance(body, dict) or not isinstance(body.get("type"), str):
        raise InvalidPayload("Webhook body must be an object with a string 'type'")

    data = body.get("data")
    data_object = data.get("object") if isinstance(data, dict) else None
    if not isinstance(data_object, dict):
        data_object = {}

    created = body.get("created")
    return VerifiedEvent(
        id=body.get("id") if isinstance(body.get("id"), str) else None,
        type=body["type"],
        created=created if isinstance(created, int) else None,
        data_object=data_object,
    )


class SignatureVerifier:
    """Binds the signing secret and tolerance loaded from configuration."""

    def __init__(self, secret: Optional[str], tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS) -> None:
        self._secret = secret
        self._tolerance = tolerance_seconds

    @property
    def is_configured(self) -> bool:
        return bool(self._secret)

    def verify(self, raw_body: bytes, signature_header: Optional[str], now: Optional[float] = None) -> VerifiedEvent:
        if not self._secret:
            raise RuntimeError("Webhook signing secret is not configured")
        return verify(raw_body, signature_header, self._secret, self._tolerance, now=now)
