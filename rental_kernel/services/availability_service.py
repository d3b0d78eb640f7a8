"""
AvailabilityService -- stock over an interval, and the per-product claim
that serializes confirmations.

Responsibility:
    Answers "how many units of product P are free over [start, end)?" from the
    active reservations, and owns the compare-and-swap on
    ``Product.reservation_version`` that makes "recompute booked quantity,
    then insert reservations" atomic per product.

Architecture position:
    Kernel > Services.  Used by PricingService (advisory checkout check) and
    OrderService (authoritative check at confirmation).

Invariants enforced:
    - Overlap is half-open: ``res.start < end AND res.end > start``, the same
      predicate as ``domain.availability.overlaps``.
    - For every product and instant, active reserved quantity never exceeds
      stock: reservations are only inserted by ``reserve_items`` after the
      product has been claimed in the current transaction.
    - Products are claimed in sorted id order so two confirmations touching
      the same products cannot deadlock.

Failure modes:
    - InvalidRangeError for a missing, naive or inverted interval.
    - ProductNotFoundError for an unknown product.
    - InsufficientStockError when the requested quantity does not fit.
    - ConcurrencyConflictError when another transaction claimed the product
      between our read and our compare-and-swap (retryable).
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable
from uuid import UUID

from sqlalchemy import func, select, update

from rental_kernel.domain.availability import snapshot, validate_range
from rental_kernel.domain.dtos import AvailabilityInfo
from rental_kernel.domain.lifecycle import ReservationStatus
from rental_kernel.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    ProductNotFoundError,
)
from rental_kernel.logging_config import get_logger
from rental_kernel.models.order import OrderItem
from rental_kernel.models.product import Product
from rental_kernel.models.reservation import Reservation
from rental_kernel.services.base import BaseService

logger = get_logger("services.availability")


class AvailabilityService(BaseService):
    """
    Availability index over active reservations.

    Contract:
        ``check_availability`` is read-only.  ``claim_products`` and
        ``reserve_items`` must run inside the caller's transaction; the claim
        holds until that transaction ends.
    """

    def get_product(self, product_id: UUID, require_active: bool = False) -> Product:
        product = self.session.get(Product, product_id)
        if product is None or (require_active and not product.is_active):
            raise ProductNotFoundError(str(product_id))
        return product

    def booked_quantity(self, product_id: UUID, start: datetime, end: datetime) -> int:
        """Sum of active reservation quantities overlapping ``[start, end)``."""
        booked = self.session.execute(
            select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
                Reservation.product_id == product_id,
                Reservation.status == ReservationStatus.ACTIVE.value,
                Reservation.start_date < end,
                Reservation.end_date > start,
            )
        ).scalar_one()
        return int(booked)

    def check_availability(
        self,
        product_id: UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> AvailabilityInfo:
        validate_range(start, end)
        product = self.get_product(product_id)
        stock = snapshot(product.stock_qty, self.booked_quantity(product_id, start, end))
        return AvailabilityInfo(
            product_id=product_id,
            start_date=start,
            end_date=end,
            available=stock.available,
            booked=stock.booked,
            total=stock.total,
        )

    def require_available(
        self,
        product_id: UUID,
        start: datetime | None,
        end: datetime | None,
        quantity: int,
    ) -> AvailabilityInfo:
        """
        Advisory check used at checkout; nothing is held afterwards.

        Raises:
            InsufficientStockError: ``quantity`` exceeds what is free.
        """
        info = self.check_availability(product_id, start, end)
        if quantity > info.available:
            raise InsufficientStockError(str(product_id), quantity, info.available)
        return info

    def claim_products(self, product_ids: Iterable[UUID]) -> None:
        """
        Take the per-product claim for every product, in sorted id order.

        Each claim reads ``reservation_version`` (row-locked where the
        backend supports it) and bumps it with a conditional UPDATE.  A
        rowcount of zero means another transaction moved the version first.

        Raises:
            ConcurrencyConflictError: lost the compare-and-swap.
            ProductNotFoundError: a product vanished.
        """
        for product_id in sorted(set(product_ids), key=str):
            observed = self.session.execute(
                select(Product.reservation_version)
                .where(Product.id == product_id)
                .with_for_update()
            ).scalar_one_or_none()
            if observed is None:
                raise ProductNotFoundError(str(product_id))

            result = self.session.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.reservation_version == observed,
                )
                .values(reservation_version=observed + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning(
                    "product_claim_conflict",
                    extra={"product_id": str(product_id), "observed_version": observed},
                )
                raise ConcurrencyConflictError("Product", str(product_id))

            logger.debug(
                "product_claimed",
                extra={"product_id": str(product_id), "version": observed + 1},
            )

    def reserve_items(self, order_id: UUID, items: list[OrderItem], actor_id: UUID) -> list[Reservation]:
        """
        Claim every product on the order, re-check stock, then insert one
        active reservation per item.

        Booked quantity is recomputed after the claim, and each reservation
        is flushed before the next item is checked, so two items of the same
        order competing for one product are counted against each other.

        Raises:
            InsufficientStockError: an item no longer fits.
        """
        self.claim_products(item.product_id for item in items)

        reservations = []
        for item in items:
            product = self.session.get(Product, item.product_id, populate_existing=True)
            booked = self.booked_quantity(item.product_id, item.start_date, item.end_date)
            stock = snapshot(product.stock_qty, booked)
            if not stock.fits(item.quantity):
                logger.info(
                    "reservation_rejected",
                    extra={
                        "product_id": str(item.product_id),
                        "requested": item.quantity,
                        "available": stock.available,
                    },
                )
                raise InsufficientStockError(str(item.product_id), item.quantity, stock.available)

            reservation = Reservation(
                order_id=order_id,
                order_item_id=item.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                start_date=item.start_date,
                end_date=item.end_date,
                status=ReservationStatus.ACTIVE.value,
                created_by_id=actor_id,
            )
            self.session.add(reservation)
            self.session.flush()
            reservations.append(reservation)

        logger.info(
            "reservations_created",
            extra={"order_id": str(order_id), "count": len(reservations)},
        )
        return reservations

    def release_order(self, order_id: UUID, released_at: datetime, actor_id: UUID) -> int:
        """Release every active reservation of an order.  Returns the number released."""
        result = self.session.execute(
            update(Reservation)
            .where(
                Reservation.order_id == order_id,
                Reservation.status == ReservationStatus.ACTIVE.value,
            )
            .values(
                status=ReservationStatus.RELEASED.value,
                released_at=released_at,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        released = result.rowcount or 0
        if released:
            logger.info(
                "reservations_released",
                extra={"order_id": str(order_id), "count": released},
            )
        return released
