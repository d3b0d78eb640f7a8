"""
Gateway confirmation signatures.

The payment gateway signs ``"{gateway_order_id}|{gateway_payment_id}"`` with
HMAC-SHA256 under the shared secret and sends the hex digest along with the
confirmation.  Verification uses a constant-time comparison.
"""

from __future__ import annotations

import hashlib
import hmac


def _payload(gateway_order_id: str, gateway_payment_id: str) -> bytes:
    return f"{gateway_order_id}|{gateway_payment_id}".encode("utf-8")


def sign_confirmation(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Hex HMAC-SHA256 of the confirmation payload."""
    return hmac.new(
        secret.encode("utf-8"),
        _payload(gateway_order_id, gateway_payment_id),
        hashlib.sha256,
    ).hexdigest()


def verify_confirmation(
    secret: str,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
) -> bool:
    """True when ``signature`` matches; an empty secret never verifies."""
    if not secret or not signature:
        return False
    expected = sign_confirmation(secret, gateway_order_id, gateway_payment_id)
    return hmac.compare_digest(expected, signature)
