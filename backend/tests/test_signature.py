"""
Unit tests for Novu webhook signature verification.
"""

import hashlib
import hmac

import pytest

from mailfeed.services.signature import compute_signature, verify_signature

SECRET = "test-novu-secret"
BODY = b'{"subject":"Hi","from":"a@x.com","to":[{"email":"b@y.com"}],"html":"<p>hi</p>"}'


def _sign(body: bytes, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestComputeSignature:
    def test_matches_hmac_sha256_hexdigest(self):
        assert compute_signature(BODY, SECRET) == _sign(BODY)

    def test_is_lowercase_hex_of_sha256_length(self):
        signature = compute_signature(b"", SECRET)
        assert len(signature) == 64
        assert signature == signature.lower()


class TestVerifySignature:
    def test_valid_signature(self):
        assert verify_signature(BODY, _sign(BODY), SECRET) is True

    def test_empty_body_with_valid_signature(self):
        assert verify_signature(b"", _sign(b""), SECRET) is True

    @pytest.mark.parametrize("position", [0, 17, 63])
    def test_any_flipped_bit_is_rejected(self, position):
        signature = _sign(BODY)
        flipped_char = format(int(signature[position], 16) ^ 0x1, "x")
        tampered = signature[:position] + flipped_char + signature[position + 1:]

        assert verify_signature(BODY, tampered, SECRET) is False

    def test_signature_over_different_body_is_rejected(self):
        assert verify_signature(BODY + b" ", _sign(BODY), SECRET) is False

    def test_wrong_secret_is_rejected(self):
        assert verify_signature(BODY, _sign(BODY, "other-secret"), SECRET) is False

    def test_short_signature_returns_false(self):
        """Length mismatch must short-circuit to False, never raise."""
        assert verify_signature(BODY, "deadbeef", SECRET) is False

    def test_long_signature_returns_false(self):
        assert verify_signature(BODY, _sign(BODY) + "00", SECRET) is False

    def test_missing_signature(self):
        assert verify_signature(BODY, None, SECRET) is False

    def test_empty_signature(self):
        assert verify_signature(BODY, "", SECRET) is False

    def test_empty_secret_is_rejected(self):
        assert verify_signature(BODY, _sign(BODY, ""), "") is False

    def test_non_ascii_signature_returns_false(self):
        assert verify_signature(BODY, "é" * 64, SECRET) is False

    def test_uppercase_hex_is_rejected(self):
        assert verify_signature(BODY, _sign(BODY).upper(), SECRET) is False
