"""
Module: rental_kernel.selectors.order_selector
Responsibility: Read-only order queries: caller-scoped order lists and the
    PICKED_UP candidates the reminder/overdue scanner walks.
Architecture position: Kernel > Selectors.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from rental_kernel.domain.authorization import Action, Caller, Role, authorize
from rental_kernel.domain.dtos import OrderInfo
from rental_kernel.domain.lifecycle import OrderStatus
from rental_kernel.models.order import RentalOrder
from rental_kernel.selectors.base import BaseSelector


class OrderSelector(BaseSelector):
    """Order queries returning OrderInfo snapshots."""

    def list_orders(
        self,
        caller: Caller,
        status: OrderStatus | None = None,
        limit: int = 100,
    ) -> list[OrderInfo]:
        """Orders visible to the caller: their own, their vendor's, or all for admins."""
        authorize(caller, Action.VIEW_ORDER)
        stmt = select(RentalOrder).options(selectinload(RentalOrder.items))
        if caller.role is Role.CUSTOMER:
            stmt = stmt.where(RentalOrder.customer_id == caller.user_id)
        elif caller.role is Role.VENDOR:
            stmt = stmt.where(RentalOrder.vendor_id == caller.vendor_id)
        if status is not None:
            stmt = stmt.where(RentalOrder.status == OrderStatus(status).value)
        stmt = stmt.order_by(RentalOrder.order_number).limit(limit)
        return [OrderInfo.from_model(o) for o in self.session.execute(stmt).scalars()]

    def picked_up_orders(self) -> list[OrderInfo]:
        """Every order currently out with the customer, items loaded."""
        stmt = (
            select(RentalOrder)
            .options(selectinload(RentalOrder.items))
            .where(RentalOrder.status == OrderStatus.PICKED_UP.value)
            .order_by(RentalOrder.order_number)
        )
        return [OrderInfo.from_model(o) for o in self.session.execute(stmt).scalars()]

    def reminder_candidates(self) -> list[OrderInfo]:
        """PICKED_UP orders that have not been sent a return reminder."""
        return self._unmarked(RentalOrder.reminder_sent_at)

    def overdue_candidates(self) -> list[OrderInfo]:
        """PICKED_UP orders that have not been sent an overdue alert."""
        return self._unmarked(RentalOrder.overdue_alert_sent_at)

    def _unmarked(self, marker) -> list[OrderInfo]:
        stmt = (
            select(RentalOrder)
            .options(selectinload(RentalOrder.items))
            .where(
                RentalOrder.status == OrderStatus.PICKED_UP.value,
                marker.is_(None),
            )
            .order_by(RentalOrder.order_number)
        )
        return [OrderInfo.from_model(o) for o in self.session.execute(stmt).scalars()]
