"""Orchestration over the rental kernel: the RentalEngine facade and the scanner."""

from rental_services.engine import RentalEngine
from rental_services.interfaces import LoggingNotifier, Notifier, PaymentGateway
from rental_services.overdue_scanner import OverdueScanner, ScanResult
from rental_services.transaction import run_in_transaction

__all__ = [
    "LoggingNotifier",
    "Notifier",
    "OverdueScanner",
    "PaymentGateway",
    "RentalEngine",
    "ScanResult",
    "run_in_transaction",
]
