import json

import pytest
import stripe

from subscription_sync.domain.errors import (
    InvalidPayload,
    MalformedSignatureHeader,
    SignatureMismatch,
    StaleTimestamp,
    VerificationError,
)
from subscription_sync.services.signature_verifier import (
    SignatureVerifier,
    parse_signature_header,
    verify,
)

from .helpers import WEBHOOK_SECRET, event_body, sign

TIMESTAMP = 1_760_000_000


@pytest.fixture
def body():
    return event_body("checkout.session.completed", {"id": "cs_1", "client_reference_id": "u1"})


def test_valid_signature_returns_parsed_event(body):
    event = verify(body, sign(body, timestamp=TIMESTAMP), WEBHOOK_SECRET, now=TIMESTAMP + 10)

    assert event.id == "evt_test_1"
    assert event.type == "checkout.session.completed"
    assert event.data_object["client_reference_id"] == "u1"


def test_tampered_body_is_rejected(body):
    header = sign(body, timestamp=TIMESTAMP)
    tampered = body.replace(b'"u1"', b'"u2"')

    with pytest.raises(SignatureMismatch):
        verify(tampered, header, WEBHOOK_SECRET, now=TIMESTAMP)


def test_wrong_secret_is_rejected(body):
    header = sign(body, secret="whsec_other", timestamp=TIMESTAMP)

    with pytest.raises(SignatureMismatch):
        verify(body, header, WEBHOOK_SECRET, now=TIMESTAMP)


def test_timestamp_outside_tolerance_is_stale(body):
    header = sign(body, timestamp=TIMESTAMP)

    with pytest.raises(StaleTimestamp) as exc_info:
        verify(body, header, WEBHOOK_SECRET, now=TIMESTAMP + 301)

    assert exc_info.value.tolerance == 300
    assert isinstance(exc_info.value, VerificationError)


def test_timestamp_in_the_future_beyond_tolerance_is_stale(body):
    header = sign(body, timestamp=TIMESTAMP + 600)

    with pytest.raises(StaleTimestamp):
        verify(body, header, WEBHOOK_SECRET, now=TIMESTAMP)


def test_timestamp_just_inside_tolerance_is_accepted(body):
    header = sign(body, timestamp=TIMESTAMP)

    assert verify(body, header, WEBHOOK_SECRET, now=TIMESTAMP + 299).type == "checkout.session.completed"


def test_any_matching_v1_signature_is_accepted(body):
    valid = sign(body, timestamp=TIMESTAMP).split(",v1=")[1]
    header = f"t={TIMESTAMP},v1={'0' * 64},v0=legacy,v1={valid}"

    assert verify(body, header, WEBHOOK_SECRET, now=TIMESTAMP).id == "evt_test_1"


@pytest.mark.parametrize(
    "header",
    [None, "", "garbage", "t=abc,v1=deadbeef", "v1=deadbeef", f"t={TIMESTAMP}", f"t={TIMESTAMP},v0=abc"],
)
def test_malformed_headers_are_rejected(body, header):
    with pytest.raises(MalformedSignatureHeader):
        verify(body, header, WEBHOOK_SECRET, now=TIMESTAMP)


def test_malformed_header_is_a_signature_mismatch():
    with pytest.raises(SignatureMismatch):
        parse_signature_header("nonsense")


def test_parse_signature_header_collects_all_v1_values():
    timestamp, signatures = parse_signature_header("t=12, v1=aa ,v1=bb")

    assert timestamp == 12
    assert signatures == ["aa", "bb"]


def test_signed_non_json_body_is_invalid_payload():
    raw = b"not json at all"

    with pytest.raises(InvalidPayload):
        verify(raw, sign(raw, timestamp=TIMESTAMP), WEBHOOK_SECRET, now=TIMESTAMP)


def test_signed_body_without_type_is_invalid_payload():
    raw = json.dumps({"id": "evt_1", "data": {"object": {}}}).encode()

    with pytest.raises(InvalidPayload):
        verify(raw, sign(raw, timestamp=TIMESTAMP), WEBHOOK_SECRET, now=TIMESTAMP)


def test_missing_data_object_defaults_to_empty_mapping():
    raw = json.dumps({"id": "evt_1", "type": "ping"}).encode()

    event = verify(raw, sign(raw, timestamp=TIMESTAMP), WEBHOOK_SECRET, now=TIMESTAMP)

    assert event.data_object == {}
    assert event.created is None


def test_verifier_without_secret_is_not_configured(body):
    verifier = SignatureVerifier(None)

    assert verifier.is_configured is False
    with pytest.raises(RuntimeError):
        verifier.verify(body, sign(body))


def test_verifier_uses_configured_tolerance(body):
    verifier = SignatureVerifier(WEBHOOK_SECRET, tolerance_seconds=10)
    header = sign(body, timestamp=TIMESTAMP)

    assert verifier.verify(body, header, now=TIMESTAMP + 5).type == "checkout.session.completed"
    with pytest.raises(StaleTimestamp):
        verifier.verify(body, header, now=TIMESTAMP + 11)


def test_digest_check_is_delegated_to_stripe(body, monkeypatch):
    calls = []

    def fake_verify_header(payload, header, secret, tolerance=None):
        calls.append((payload, header, secret, tolerance))
        return True

    monkeypatch.setattr(stripe.WebhookSignature, "verify_header", fake_verify_header)
    header = f"t={TIMESTAMP},v1=not-a-real-digest"

    event = verify(body, header, WEBHOOK_SECRET, now=TIMESTAMP)

    assert event.type == "checkout.session.completed"
    assert calls == [(body.decode("utf-8"), header, WEBHOOK_SECRET, None)]


def test_stripe_verification_error_becomes_signature_mismatch(body, monkeypatch):
    def rejecting_verify_header(payload, header, secret, tolerance=None):
        raise stripe.SignatureVerificationError("No signatures found", header, payload)

    monkeypatch.setattr(stripe.WebhookSignature, "verify_header", rejecting_verify_header)

    with pytest.raises(SignatureMismatch, match="No signatures found"):
        verify(body, sign(body, timestamp=TIMESTAMP), WEBHOOK_SECRET, now=TIMESTAMP)


def test_stripe_still_enforces_digest_when_timestamp_is_fresh(body):
    header = sign(body, timestamp=TIMESTAMP)

    with pytest.raises(SignatureMismatch):
        verify(body + b" ", header, WEBHOOK_SECRET, now=TIMESTAMP)


def test_non_utf8_body_is_invalid_payload():
    raw = b"\xff\xfe{}"

    with pytest.raises(InvalidPayload):
        verify(raw, f"t={TIMESTAMP},v1=abc", WEBHOOK_SECRET, now=TIMESTAMP)
