"""Tests for stock checks and reservation claims."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from rental_kernel.exceptions import InsufficientStockError, InvalidRangeError, ProductNotFoundError
from rental_kernel.models.product import Product
from rental_kernel.services.availability_service import AvailabilityService
from rental_kernel.services.order_service import OrderService
from tests.conftest import RENTAL_END, RENTAL_START


@pytest.fixture
def availability(session, clock):
    return AvailabilityService(session, clock)


class TestCheckAvailability:
    def test_free_product(self, availability, seed):
        info = availability.check_availability(seed.camera, RENTAL_START, RENTAL_END)
        assert (info.available, info.booked, info.total) == (2, 0, 2)

    def test_invalid_range(self, availability, seed):
        with pytest.raises(InvalidRangeError):
            availability.check_availability(seed.camera, RENTAL_END, RENTAL_START)

    def test_unknown_product(self, availability):
        with pytest.raises(ProductNotFoundError):
            availability.check_availability(uuid4(), RENTAL_START, RENTAL_END)

    def test_only_overlapping_reservations_count(self, availability, session, clock, customer, vendor, seed, line):
        orders = OrderService(session, clock)
        order = orders.place_order(customer, [line(seed.camera)])
        orders.confirm(vendor, order.id)

        after = datetime(2025, 1, 20, tzinfo=timezone.utc)
        assert availability.check_availability(seed.camera, RENTAL_START, RENTAL_END).available == 1
        assert availability.check_availability(seed.camera, RENTAL_END, after).available == 2

    def test_require_available(self, availability, seed):
        with pytest.raises(InsufficientStockError) as exc_info:
            availability.require_available(seed.drone, RENTAL_START, RENTAL_END, 2)
        assert (exc_info.value.requested, exc_info.value.available) == (2, 1)


class TestClaims:
    def test_claim_bumps_reservation_version(self, availability, session, seed):
        before = session.execute(
            select(Product.reservation_version).where(Product.id == seed.camera)
        ).scalar_one()

        availability.claim_products([seed.camera, seed.camera, seed.tripod])

        after = session.execute(
            select(Product.reservation_version).where(Product.id == seed.camera)
        ).scalar_one()
        assert after == before + 1

    def test_claim_unknown_product(self, availability):
        with pytest.raises(ProductNotFoundError):
            availability.claim_products([uuid4()])
