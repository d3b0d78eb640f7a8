"""Read-only selectors."""

from rental_kernel.selectors.order_selector import OrderSelector
from rental_kernel.selectors.report_selector import ReportSelector

__all__ = ["OrderSelector", "ReportSelector"]
