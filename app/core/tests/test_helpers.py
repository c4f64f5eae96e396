"""Tests for the signature and credential helpers used by the webhooks."""

import base64
import hashlib
import hmac

from django.test import RequestFactory

from core.helpers import get_client_ip, verify_basic_auth, verify_hmac_signature


def _sign(payload: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def _basic(user: str, password: str) -> str:
    return "Basic " + base64.b64encode(f"{user}:{password}".encode()).decode()


class TestVerifyHmacSignature:
    def test_valid_signature(self):
        payload = b'{"event": "delivered"}'

        assert verify_hmac_signature(payload, _sign(payload, "secret"), "secret")

    def test_tampered_payload_rejected(self):
        signature = _sign(b"original", "secret")

        assert not verify_hmac_signature(b"tampered", signature, "secret")

    def test_missing_secret_rejects_everything(self):
        payload = b"body"

        assert not verify_hmac_signature(payload, _sign(payload, ""), "")

    def test_missing_signature_rejected(self):
        assert not verify_hmac_signature(b"body", "", "secret")


class TestVerifyBasicAuth:
    def test_matching_credentials(self):
        assert verify_basic_auth(_basic("inbound", "pw"), "inbound", "pw")

    def test_wrong_password(self):
        assert not verify_basic_auth(_basic("inbound", "nope"), "inbound", "pw")

    def test_other_scheme(self):
        assert not verify_basic_auth("Bearer abc", "inbound", "pw")

    def test_malformed_base64(self):
        assert not verify_basic_auth("Basic !!!not-base64", "inbound", "pw")

    def test_no_colon(self):
        encoded = base64.b64encode(b"inboundpw").decode()

        assert not verify_basic_auth(f"Basic {encoded}", "inbound", "pw")

    def test_unconfigured_credentials_reject(self):
        assert not verify_basic_auth(_basic("", ""), "", "")


class TestGetClientIp:
    def test_forwarded_for_first_hop(self):
        request = RequestFactory().get("/", HTTP_X_FORWARDED_FOR="203.0.113.7, 10.0.0.1")

        assert get_client_ip(request) == "203.0.113.7"

    def test_remote_addr(self):
        request = RequestFactory().get("/", REMOTE_ADDR="198.51.100.2")

        assert get_client_ip(request) == "198.51.100.2"
