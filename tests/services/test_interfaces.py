"""Tests for the collaborator protocols and the logging notifier."""

from rental_kernel.domain.values import Money
from rental_services.interfaces import LoggingNotifier, Notifier, PaymentGateway
from tests.conftest import RENTAL_END


def test_logging_notifier_satisfies_protocol():
    assert isinstance(LoggingNotifier(), Notifier)


def test_fake_gateway_satisfies_protocol(gateway):
    assert isinstance(gateway, PaymentGateway)


def test_logging_notifier_logs_events(rental_engine, customer, vendor, seed, line, captured_logs):
    order = rental_engine.place_order(customer, [line(seed.camera)])
    notifier = LoggingNotifier()

    notifier.send_return_reminder(order, RENTAL_END)
    notifier.send_late_return_alert(order, 2, Money("200"))

    messages = {r["message"]: r for r in captured_logs()}
    assert messages["return_reminder_sent"]["order_id"] == str(order.id)
    assert messages["late_return_alert_sent"]["late_fee"] == "200.00"
