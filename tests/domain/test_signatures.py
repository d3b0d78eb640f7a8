"""Tests for gateway confirmation signing and verification."""

import hashlib
import hmac

from rental_kernel.domain.signatures import sign_confirmation, verify_confirmation

SECRET = "gateway-secret"


def test_signature_is_hmac_sha256_of_joined_ids():
    expected = hmac.new(SECRET.encode(), b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert sign_confirmation(SECRET, "order_1", "pay_1") == expected


def test_valid_signature_verifies():
    signature = sign_confirmation(SECRET, "order_1", "pay_1")
    assert verify_confirmation(SECRET, "order_1", "pay_1", signature)


def test_tampered_payment_id_fails():
    signature = sign_confirmation(SECRET, "order_1", "pay_1")
    assert not verify_confirmation(SECRET, "order_1", "pay_2", signature)


def test_wrong_secret_fails():
    signature = sign_confirmation("other", "order_1", "pay_1")
    assert not verify_confirmation(SECRET, "order_1", "pay_1", signature)


def test_empty_secret_never_verifies():
    signature = sign_confirmation("", "order_1", "pay_1")
    assert not verify_confirmation("", "order_1", "pay_1", signature)


def test_empty_signature_fails():
    assert not verify_confirmation(SECRET, "order_1", "pay_1", "")
