"""
rental_services.interfaces -- collaborator contracts consumed by the engine.

Responsibility:
    Protocols for the notification and payment-gateway collaborators, plus
    the default LoggingNotifier used when the host supplies none.

Architecture position:
    Services.  The RentalEngine facade and the OverdueScanner call these
    only after the state change they report has been committed.

Invariants:
    - Notifier calls are fire-and-forget from the engine's point of view: an
      exception is logged and never rolls back committed state.
    - The gateway returns unsigned intents; signed confirmations come back
      through ``RentalEngine.confirm_gateway_payment``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from rental_kernel.domain.dtos import InvoiceInfo, OrderInfo, PaymentIntent, PickupInfo
from rental_kernel.domain.values import Money
from rental_kernel.logging_config import get_logger

logger = get_logger("services.notifier")


@runtime_checkable
class Notifier(Protocol):
    """Outbound customer notifications."""

    def send_return_reminder(self, order: OrderInfo, due_at: datetime) -> None: ...

    def send_late_return_alert(self, order: OrderInfo, delay_days: int, late_fee: Money) -> None: ...

    def send_pickup_confirmation(self, order: OrderInfo, pickup: PickupInfo) -> None: ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Remote payment gateway."""

    def create_payment_intent(self, invoice: InvoiceInfo, amount: Money) -> PaymentIntent: ...


class LoggingNotifier:
    """Notifier that only writes structured log lines."""

    def send_return_reminder(self, order: OrderInfo, due_at: datetime) -> None:
        logger.info(
            "return_reminder_sent",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "customer_id": str(order.customer_id),
                "due_at": due_at,
            },
        )

    def send_late_return_alert(self, order: OrderInfo, delay_days: int, late_fee: Money) -> None:
        logger.info(
            "late_return_alert_sent",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "customer_id": str(order.customer_id),
                "delay_days": delay_days,
                "late_fee": str(late_fee),
            },
        )

    def send_pickup_confirmation(self, order: OrderInfo, pickup: PickupInfo) -> None:
        logger.info(
            "pickup_confirmation_sent",
            extra={
                "order_id": str(order.id),
                "order_number": order.order_number,
                "customer_id": str(order.customer_id),
                "picked_at": pickup.picked_at,
            },
        )
