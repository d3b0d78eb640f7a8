"""
Module: rental_kernel.selectors.report_selector
Responsibility: Report-shaped rows for the external exporter (CSV/PDF
    formatting happens outside the engine).
Architecture position: Kernel > Selectors.

Rows are plain dicts with snake_case keys and Decimal money values, newest
first.  Vendors only ever see their own rows.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from rental_kernel.domain.authorization import Action, Caller, Role, authorize
from rental_kernel.domain.lifecycle import InvoiceStatus, OrderStatus
from rental_kernel.models.invoice import Invoice
from rental_kernel.models.order import OrderItem, RentalOrder
from rental_kernel.models.product import Product
from rental_kernel.selectors.base import BaseSelector

REVENUE_STATUSES = (InvoiceStatus.PAID.value, InvoiceStatus.PARTIALLY_PAID.value)


class ReportSelector(BaseSelector):
    """Exporter rows for orders, revenue and products."""

    def _vendor_scope(self, caller: Caller, vendor_id: UUID | None) -> UUID | None:
        authorize(caller, Action.VIEW_REPORTS)
        if caller.role is Role.VENDOR:
            return caller.vendor_id
        return vendor_id

    def orders_report_rows(
        self,
        caller: Caller,
        start: datetime | None = None,
        end: datetime | None = None,
        vendor_id: UUID | None = None,
        status: OrderStatus | None = None,
    ) -> list[dict[str, Any]]:
        vendor_id = self._vendor_scope(caller, vendor_id)
        stmt = select(RentalOrder).options(selectinload(RentalOrder.items))
        if start is not None:
            stmt = stmt.where(RentalOrder.created_at >= start)
        if end is not None:
            stmt = stmt.where(RentalOrder.created_at <= end)
        if vendor_id is not None:
            stmt = stmt.where(RentalOrder.vendor_id == vendor_id)
        if status is not None:
            stmt = stmt.where(RentalOrder.status == OrderStatus(status).value)
        stmt = stmt.order_by(RentalOrder.created_at.desc(), RentalOrder.order_number)

        return [
            {
                "order_number": order.order_number,
                "date": order.created_at.date().isoformat(),
                "vendor_id": str(order.vendor_id),
                "customer_id": str(order.customer_id),
                "status": order.status,
                "subtotal": order.subtotal,
                "tax": order.tax,
                "discount": order.discount,
                "security_deposit": order.deposit,
                "total": order.total,
                "item_count": len(order.items),
            }
            for order in self.session.execute(stmt).scalars()
        ]

    def revenue_report_rows(
        self,
        caller: Caller,
        start: datetime | None = None,
        end: datetime | None = None,
        vendor_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        """Invoices that have received money (PAID or PARTIALLY_PAID)."""
        vendor_id = self._vendor_scope(caller, vendor_id)
        stmt = (
            select(Invoice, RentalOrder.order_number)
            .join(RentalOrder, RentalOrder.id == Invoice.order_id)
            .where(Invoice.status.in_(REVENUE_STATUSES))
        )
        if start is not None:
            stmt = stmt.where(Invoice.created_at >= start)
        if end is not None:
            stmt = stmt.where(Invoice.created_at <= end)
        if vendor_id is not None:
            stmt = stmt.where(Invoice.vendor_id == vendor_id)
        stmt = stmt.order_by(Invoice.created_at.desc(), Invoice.invoice_number)

        rows = []
        for invoice, order_number in self.session.execute(stmt):
            rows.append(
                {
                    "invoice_number": invoice.invoice_number,
                    "order_number": order_number,
                    "date": invoice.created_at.date().isoformat(),
                    "vendor_id": str(invoice.vendor_id),
                    "subtotal": invoice.subtotal,
                    "tax": invoice.tax,
                    "security_deposit": invoice.deposit,
                    "late_fee": invoice.late_fee,
                    "damage_fee": invoice.damage_fee,
                    "total": invoice.total,
                    "amount_paid": invoice.amount_paid,
                    "balance": invoice.total - invoice.amount_paid,
                    "status": invoice.status,
                }
            )
        return rows

    def products_report_rows(
        self,
        caller: Caller,
        vendor_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        vendor_id = self._vendor_scope(caller, vendor_id)
        times_rented = (
            select(OrderItem.product_id, func.count(OrderItem.id).label("times_rented"))
            .group_by(OrderItem.product_id)
            .subquery()
        )
        stmt = select(Product, func.coalesce(times_rented.c.times_rented, 0)).outerjoin(
            times_rented, times_rented.c.product_id == Product.id
        )
        if vendor_id is not None:
            stmt = stmt.where(Product.vendor_id == vendor_id)
        stmt = stmt.order_by(Product.name)

        return [
            {
                "name": product.name,
                "vendor_id": str(product.vendor_id),
                "base_price": product.base_price,
                "security_deposit": product.security_deposit,
                "stock_qty": product.stock_qty,
                "times_rented": int(count),
                "is_active": product.is_active,
            }
            for product, count in self.session.execute(stmt)
        ]
