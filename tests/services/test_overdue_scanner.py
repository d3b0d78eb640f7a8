"""
Tests for the reminder and overdue scans.

Verifies:
- Reminders go out for PICKED_UP orders whose earliest end is inside the
  lookahead window, once per order
- Overdue alerts carry a freshly computed late fee, once per order
- A failed send releases the claim so the next run retries it
"""

from datetime import datetime, timedelta, timezone

import pytest

from rental_kernel.domain.values import Money
from rental_services.overdue_scanner import (
    OVERDUE_JOB,
    REMINDER_JOB,
    OverdueScanner,
    in_reminder_window,
    is_overdue,
)
from tests.conftest import RENTAL_END

DAY_BEFORE_DUE = RENTAL_END - timedelta(hours=18)
THREE_DAYS_LATE = datetime(2025, 1, 12, 5, 0, tzinfo=timezone.utc)


@pytest.fixture
def scanner(session_factory, notifier, clock, engine_config):
    return OverdueScanner(session_factory, notifier, clock=clock, config=engine_config)


@pytest.fixture
def picked_up(rental_engine, customer, vendor, seed, line):
    order = rental_engine.place_order(customer, [line(seed.camera)])
    rental_engine.confirm(vendor, order.id)
    rental_engine.record_pickup(vendor, order.id)
    return rental_engine.get_order(vendor, order.id)


class TestWindows:
    def test_reminder_window_bounds(self, picked_up):
        lookahead = timedelta(hours=24)
        assert in_reminder_window(picked_up, DAY_BEFORE_DUE, lookahead)
        assert in_reminder_window(picked_up, RENTAL_END, lookahead)
        assert not in_reminder_window(picked_up, RENTAL_END - timedelta(hours=25), lookahead)
        assert not in_reminder_window(picked_up, RENTAL_END + timedelta(seconds=1), lookahead)

    def test_overdue_is_strictly_after_end(self, picked_up):
        assert not is_overdue(picked_up, RENTAL_END)
        assert is_overdue(picked_up, RENTAL_END + timedelta(seconds=1))


class TestReminders:
    def test_sent_once(self, scanner, notifier, picked_up):
        first = scanner.scan_reminders(DAY_BEFORE_DUE)
        second = scanner.scan_reminders(DAY_BEFORE_DUE + timedelta(hours=1))

        assert first.job_name == REMINDER_JOB
        assert (first.examined, first.sent, first.failed) == (1, 1, 0)
        assert second.sent == 0
        assert notifier.reminders == [(picked_up.id, RENTAL_END)]

    def test_outside_window_not_sent(self, scanner, notifier, picked_up):
        result = scanner.scan_reminders(RENTAL_END - timedelta(days=3))
        assert result.examined == 0
        assert notifier.reminders == []

    def test_only_picked_up_orders(self, rental_engine, scanner, notifier, customer, vendor, seed, line):
        order = rental_engine.place_order(customer, [line(seed.tripod)])
        rental_engine.confirm(vendor, order.id)

        assert scanner.scan_reminders(DAY_BEFORE_DUE).examined == 0
        assert notifier.reminders == []

    def test_failed_send_is_retried(self, scanner, notifier, picked_up, captured_logs):
        notifier.fail = True
        failed = scanner.scan_reminders(DAY_BEFORE_DUE)
        assert (failed.sent, failed.failed) == (0, 1)
        assert any(r["message"] == "notification_failed" for r in captured_logs())

        notifier.fail = False
        retried = scanner.scan_reminders(DAY_BEFORE_DUE)
        assert retried.sent == 1
        assert len(notifier.reminders) == 1

    def test_uses_clock_when_no_time_given(self, scanner, notifier, clock, picked_up):
        clock.set_time(DAY_BEFORE_DUE)
        assert scanner.scan_reminders().sent == 1


class TestOverdue:
    def test_alert_carries_computed_fee(self, scanner, notifier, picked_up):
        result = scanner.scan_overdue(THREE_DAYS_LATE)

        assert result.job_name == OVERDUE_JOB
        assert result.sent == 1
        assert notifier.late_alerts == [(picked_up.id, 3, Money("300"))]

    def test_fee_is_not_applied_to_order(self, rental_engine, scanner, vendor, picked_up):
        scanner.scan_overdue(THREE_DAYS_LATE)
        order = rental_engine.get_order(vendor, picked_up.id)
        assert order.total == picked_up.total

    def test_alert_sent_once(self, scanner, notifier, picked_up):
        scanner.scan_overdue(THREE_DAYS_LATE)
        again = scanner.scan_overdue(THREE_DAYS_LATE + timedelta(hours=6))
        assert again.examined == 0
        assert len(notifier.late_alerts) == 1

    def test_not_yet_due(self, scanner, notifier, picked_up):
        assert scanner.scan_overdue(RENTAL_END).examined == 0
        assert notifier.late_alerts == []

    def test_returned_order_never_alerted(self, rental_engine, scanner, notifier, clock, vendor, picked_up):
        clock.set_time(RENTAL_END)
        rental_engine.record_return(vendor, picked_up.id)

        assert scanner.scan_overdue(THREE_DAYS_LATE).examined == 0

    def test_failed_alert_is_retried(self, scanner, notifier, picked_up):
        notifier.fail = True
        assert scanner.scan_overdue(THREE_DAYS_LATE).failed == 1

        notifier.fail = False
        assert scanner.scan_overdue(THREE_DAYS_LATE).sent == 1
        assert len(notifier.late_alerts) == 1

    def test_engine_delegates_to_scanner(self, rental_engine, notifier, picked_up):
        assert rental_engine.scan_overdue(THREE_DAYS_LATE).sent == 1
        assert rental_engine.scan_reminders(THREE_DAYS_LATE).examined == 0
