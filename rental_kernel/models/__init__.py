"""ORM models for the rental kernel."""

from rental_kernel.models.coupon import Coupon
from rental_kernel.models.fulfillment import Pickup, Return
from rental_kernel.models.invoice import PAYMENT_STATUS_COMPLETED, Invoice, Payment
from rental_kernel.models.order import OrderItem, RentalOrder
from rental_kernel.models.product import Product
from rental_kernel.models.reservation import Reservation
from rental_kernel.models.setting import Setting

__all__ = [
    "Coupon",
    "Invoice",
    "OrderItem",
    "PAYMENT_STATUS_COMPLETED",
    "Payment",
    "Pickup",
    "Product",
    "RentalOrder",
    "Reservation",
    "Return",
    "Setting",
]
