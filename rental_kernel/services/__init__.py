"""Flush-only kernel services.  The caller owns every transaction."""

from rental_kernel.services.availability_service import AvailabilityService
from rental_kernel.services.base import SYSTEM_ACTOR_ID, BaseService
from rental_kernel.services.invoice_service import InvoiceService
from rental_kernel.services.order_service import OrderService
from rental_kernel.services.pricing_service import PricingService
from rental_kernel.services.settings_service import SettingsService

__all__ = [
    "AvailabilityService",
    "BaseService",
    "InvoiceService",
    "OrderService",
    "PricingService",
    "SYSTEM_ACTOR_ID",
    "SettingsService",
]
