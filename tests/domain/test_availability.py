"""Tests for the pure availability helpers (half-open overlap, clamping)."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from rental_kernel.domain.availability import (
    booked_quantity,
    overlaps,
    snapshot,
    validate_range,
)
from rental_kernel.exceptions import InvalidRangeError

T = datetime(2025, 1, 10, tzinfo=timezone.utc)
DAY = timedelta(days=1)


@dataclass
class FakeBooking:
    quantity: int
    start_date: datetime
    end_date: datetime


class TestValidateRange:
    def test_valid(self):
        validate_range(T, T + DAY)

    @pytest.mark.parametrize(
        "start,end",
        [
            (None, T),
            (T, None),
            (T, T),
            (T + DAY, T),
            (datetime(2025, 1, 1), datetime(2025, 1, 2)),
        ],
    )
    def test_invalid(self, start, end):
        with pytest.raises(InvalidRangeError):
            validate_range(start, end)


class TestOverlaps:
    def test_back_to_back_do_not_overlap(self):
        assert not overlaps(T - DAY, T, T, T + DAY)
        assert not overlaps(T, T + DAY, T - DAY, T)

    def test_contained(self):
        assert overlaps(T, T + 3 * DAY, T + DAY, T + 2 * DAY)

    def test_partial(self):
        assert overlaps(T, T + 2 * DAY, T + DAY, T + 3 * DAY)

    def test_one_microsecond_overlap(self):
        assert overlaps(T - DAY, T + timedelta(microseconds=1), T, T + DAY)


class TestBookedQuantity:
    def test_sums_only_overlapping(self):
        bookings = [
            FakeBooking(1, T - 2 * DAY, T),
            FakeBooking(2, T, T + DAY),
            FakeBooking(3, T + DAY, T + 2 * DAY),
        ]
        assert booked_quantity(bookings, T, T + DAY) == 2
        assert booked_quantity(bookings, T - DAY, T + 2 * DAY) == 6

    def test_empty(self):
        assert booked_quantity([], T, T + DAY) == 0


class TestSnapshot:
    def test_available(self):
        stock = snapshot(5, 2)
        assert (stock.available, stock.booked, stock.total) == (3, 2, 5)
        assert stock.fits(3)
        assert not stock.fits(4)

    def test_available_never_negative(self):
        assert snapshot(1, 3).available == 0
