"""
Availability -- pure overlap and booked-quantity arithmetic.

Responsibility:
    The half-open overlap predicate and the booked/available computation
    shared by the availability check, the checkout pre-check and the
    confirmation path.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The storage-side
    mirror of ``overlaps()`` lives in AvailabilityService.

Invariants enforced:
    - Intervals are half-open ``[start, end)``: a booking ending at T and
      one starting at T do not overlap.
    - ``available`` is clamped at zero; it is never negative even when stock
      was lowered below what is already booked.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from rental_kernel.exceptions import InvalidRangeError


class Booking(Protocol):
    """Anything with a quantity held over an interval."""

    quantity: int
    start_date: datetime
    end_date: datetime


@dataclass(frozen=True)
class StockSnapshot:
    """Booked and remaining units of one product over one interval."""

    available: int
    booked: int
    total: int

    def fits(self, quantity: int) -> bool:
        return quantity <= self.available


def validate_range(start: datetime | None, end: datetime | None) -> None:
    """
    Raises:
        InvalidRangeError: either bound is missing, naive, or start >= end.
    """
    if start is None or end is None:
        raise InvalidRangeError(start, end)
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidRangeError(start, end)
    if start >= end:
        raise InvalidRangeError(start, end)


def overlaps(
    a_start: datetime,
    a_end: datetime,
    b_start: datetime,
    b_end: datetime,
) -> bool:
    """Half-open interval intersection: ``a.start < b.end and a.end > b.start``."""
    return a_start < b_end and a_end > b_start


def booked_quantity(bookings: Iterable[Booking], start: datetime, end: datetime) -> int:
    """Sum the quantities of bookings overlapping ``[start, end)``."""
    return sum(
        b.quantity for b in bookings if overlaps(b.start_date, b.end_date, start, end)
    )


def snapshot(stock_qty: int, booked: int) -> StockSnapshot:
    return StockSnapshot(available=max(0, stock_qty - booked), booked=booked, total=stock_qty)
