"""
Human-readable document numbers.

``<PREFIX>-<base36 epoch milliseconds>-<6 random hex digits>``, upper-cased,
e.g. ``ORD-M5X2K9Q1-3FA9C2``.  Uniqueness is ultimately enforced by the
unique constraints on the number columns; the random suffix makes collisions
between numbers minted in the same millisecond negligible.
"""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

ORDER_PREFIX = "ORD"
QUOTATION_PREFIX = "QUO"
INVOICE_PREFIX = "INV"

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("to_base36 requires a non-negative integer")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _document_number(prefix: str, at: datetime) -> str:
    millis = int(at.timestamp() * 1000)
    return f"{prefix}-{to_base36(millis)}-{uuid4().hex[:6].upper()}"


def generate_order_number(at: datetime) -> str:
    return _document_number(ORDER_PREFIX, at)


def generate_quotation_number(at: datetime) -> str:
    return _document_number(QUOTATION_PREFIX, at)


def generate_invoice_number(at: datetime) -> str:
    return _document_number(INVOICE_PREFIX, at)
