"""
Tests for webhook signing, verification and event-name translation
"""

import json

import pytest

from chargeback_connectors.errors import ValidationError, WebhookSignatureError
from chargeback_connectors.webhooks import (
    EventNameMap,
    compute_signature,
    generate_webhook_secret,
    verify_and_load,
    verify_signature,
)

SECRET = "whsec_test_secret"
BODY = json.dumps({"event": "reservation.created", "id": "R1"}).encode()


class TestSignatures:
    def test_roundtrip(self):
        assert verify_signature(SECRET, BODY, compute_signature(SECRET, BODY))

    def test_prefixed_and_uppercase_signatures(self):
        signature = compute_signature(SECRET, BODY)
        assert verify_signature(SECRET, BODY, f"sha256={signature}")
        assert verify_signature(SECRET, BODY, signature.upper())

    def test_tampered_body_rejected(self):
        signature = compute_signature(SECRET, BODY)
        assert not verify_signature(SECRET, BODY + b" ", signature)

    def test_missing_inputs_rejected(self):
        assert not verify_signature("", BODY, "abc")
        assert not verify_signature(SECRET, BODY, None)

    def test_non_ascii_signature_is_a_mismatch(self):
        assert not verify_signature(SECRET, BODY, "\u00e9" * 64)

    def test_generated_secrets_are_unique(self):
        assert generate_webhook_secret() != generate_webhook_secret()
        assert len(generate_webhook_secret()) == 64


class TestVerifyAndLoad:
    def load(self, headers, body=BODY, secret=SECRET):
        return verify_and_load(
            headers, body, secret=secret, signature_headers=("x-vendor-signature", "x-webhook-signature"), vendor="v"
        )

    def test_valid_payload_decoded(self):
        payload = self.load({"X-Vendor-Signature": compute_signature(SECRET, BODY)})
        assert payload == {"event": "reservation.created", "id": "R1"}

    def test_fallback_header(self):
        payload = self.load({"x-webhook-signature": compute_signature(SECRET, BODY)})
        assert payload["id"] == "R1"

    def test_fails_closed_without_secret(self):
        with pytest.raises(WebhookSignatureError):
            self.load({"x-vendor-signature": "anything"}, secret=None)

    def test_missing_signature(self):
        with pytest.raises(WebhookSignatureError):
            self.load({})

    def test_mismatch(self):
        with pytest.raises(WebhookSignatureError):
            self.load({"x-vendor-signature": compute_signature("other", BODY)})

    def test_non_ascii_header_rejected(self):
        with pytest.raises(WebhookSignatureError):
            self.load({"x-vendor-signature": "\u00e9" * 64})

    def test_signed_garbage_is_a_validation_error(self):
        body = b"not json"
        with pytest.raises(ValidationError):
            self.load({"x-vendor-signature": compute_signature(SECRET, body)}, body=body)

    def test_signed_non_object_rejected(self):
        body = b"[1, 2]"
        with pytest.raises(ValidationError):
            self.load({"x-vendor-signature": compute_signature(SECRET, body)}, body=body)


class TestEventNameMap:
    names = EventNameMap({"reservation.created": "ReservationCreated", "folio.updated": "BillUpdated"})

    def test_translation_both_ways(self):
        assert self.names.to_vendor("reservation.created") == "ReservationCreated"
        assert self.names.to_canonical("reservationcreated") == "reservation.created"

    def test_unknown_names_pass_through(self):
        assert self.names.to_canonical("SomethingNew") == "SomethingNew"
        assert self.names.to_canonical(None) == "unknown"
        assert self.names.to_vendor("guest.checked_in") == "guest.checked_in"

    def test_lists(self):
        assert self.names.to_vendor_list() == ["ReservationCreated", "BillUpdated"]
        assert self.names.to_vendor_list(["folio.updated"]) == ["BillUpdated"]
        assert self.names.canonical_events == ["reservation.created", "folio.updated"]
