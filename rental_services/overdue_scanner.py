"""
rental_services.overdue_scanner -- return reminders and overdue alerts.

Responsibility:
    Walks PICKED_UP orders and notifies customers whose earliest item end
    date is near (reminder) or past (overdue alert, with a freshly computed
    late fee that is not applied to the order).

Architecture position:
    Services.  Driven by ``rental_batch.scheduler.ScanScheduler`` or called
    directly through ``RentalEngine.scan_reminders/scan_overdue``.

Invariants enforced:
    - At most one reminder and one overdue alert per order, across process
      restarts.  The durable markers ``reminder_sent_at`` and
      ``overdue_alert_sent_at`` are claimed with a conditional UPDATE
      (``WHERE marker IS NULL``) and committed before anything is sent, so
      two scanners racing on the same order cannot both send.
    - A failed send releases the claim (only if it is still ours), so the
      next run retries that order.

Failure modes:
    - A notifier exception is logged (``notification_failed``) and counted
      in ``ScanResult.failed``; the scan carries on with the next order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import update
from sqlalchemy.orm import Session

from rental_kernel.config import EngineConfig
from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.domain.dtos import OrderInfo
from rental_kernel.domain.lifecycle import OrderStatus
from rental_kernel.logging_config import LogContext, get_logger
from rental_kernel.models.order import RentalOrder
from rental_kernel.selectors.order_selector import OrderSelector
from rental_kernel.services.order_service import OrderService
from rental_services.interfaces import Notifier
from rental_services.transaction import run_in_transaction

logger = get_logger("services.overdue_scanner")

REMINDER_JOB = "return_reminders"
OVERDUE_JOB = "overdue_alerts"


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan run."""

    job_name: str
    examined: int
    sent: int
    failed: int


def in_reminder_window(order: OrderInfo, now: datetime, lookahead: timedelta) -> bool:
    end = order.earliest_end
    return end is not None and now <= end <= now + lookahead


def is_overdue(order: OrderInfo, now: datetime) -> bool:
    end = order.earliest_end
    return end is not None and end < now


class OverdueScanner:
    """
    Reminder and overdue scans over PICKED_UP orders.

    Contract:
        ``scan_reminders`` and ``scan_overdue`` are idempotent: running
        either twice at the same instant sends nothing the second time.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: Notifier,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.config = config or EngineConfig()

    def _run(self, operation: str, work):
        return run_in_transaction(
            self._session_factory,
            work,
            operation=operation,
            max_attempts=self.config.max_retry_attempts,
            backoff_seconds=self.config.retry_backoff_seconds,
        )

    # ------------------------------------------------------------------
    # Marker claims
    # ------------------------------------------------------------------

    def _claim(self, session: Session, order_id, marker: str, claimed_at: datetime) -> bool:
        column = getattr(RentalOrder, marker)
        result = session.execute(
            update(RentalOrder)
            .where(
                RentalOrder.id == order_id,
                RentalOrder.status == OrderStatus.PICKED_UP.value,
                column.is_(None),
            )
            .values({marker: claimed_at})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _release(self, order_id, marker: str, claimed_at: datetime) -> None:
        column = getattr(RentalOrder, marker)

        def work(session: Session) -> None:
            session.execute(
                update(RentalOrder)
                .where(RentalOrder.id == order_id, column == claimed_at)
                .values({marker: None})
                .execution_options(synchronize_session=False)
            )

        self._run("scan_release_claim", work)

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def scan_reminders(self, now: datetime | None = None) -> ScanResult:
        """Remind customers whose earliest item end is within the lookahead."""
        now = now or self.clock.now()
        lookahead = timedelta(hours=self.config.reminder_lookahead_hours)
        marker = "reminder_sent_at"

        with LogContext.bind(job_name=REMINDER_JOB):
            candidates = self._run(
                "scan_reminders",
                lambda s: OrderSelector(s).reminder_candidates(),
            )
            due = [o for o in candidates if in_reminder_window(o, now, lookahead)]
            sent = failed = 0

            for order in due:
                claimed = self._run(
                    "scan_reminders_claim",
                    lambda s, order_id=order.id: self._claim(s, order_id, marker, now),
                )
                if not claimed:
                    continue
                try:
                    self.notifier.send_return_reminder(order, order.earliest_end)
                except Exception:
                    logger.exception(
                        "notification_failed",
                        extra={"notification": "return_reminder", "order_id": str(order.id)},
                    )
                    self._release(order.id, marker, now)
                    failed += 1
                else:
                    sent += 1

            result = ScanResult(REMINDER_JOB, examined=len(due), sent=sent, failed=failed)
            logger.info(
                "scan_completed",
                extra={"examined": result.examined, "sent": result.sent, "failed": result.failed},
            )
            return result

    def scan_overdue(self, now: datetime | None = None) -> ScanResult:
        """Alert customers whose earliest item end has passed."""
        now = now or self.clock.now()
        marker = "overdue_alert_sent_at"

        with LogContext.bind(job_name=OVERDUE_JOB):
            candidates = self._run(
                "scan_overdue",
                lambda s: OrderSelector(s).overdue_candidates(),
            )
            late = [o for o in candidates if is_overdue(o, now)]
            sent = failed = 0

            for order in late:

                def claim(session: Session, order: OrderInfo = order):
                    if not self._claim(session, order.id, marker, now):
                        return None
                    orders = OrderService(
                        session,
                        self.clock,
                        default_tax_rate=self.config.tax_rate,
                        default_late_fee_per_day=self.config.late_fee_per_day,
                    )
                    return orders.compute_late_fee(order.earliest_end, now)

                fee = self._run("scan_overdue_claim", claim)
                if fee is None:
                    continue
                delay_days, late_fee = fee
                try:
                    self.notifier.send_late_return_alert(order, delay_days, late_fee)
                except Exception:
                    logger.exception(
                        "notification_failed",
                        extra={"notification": "late_return_alert", "order_id": str(order.id)},
                    )
                    self._release(order.id, marker, now)
                    failed += 1
                else:
                    sent += 1

            result = ScanResult(OVERDUE_JOB, examined=len(late), sent=sent, failed=failed)
            logger.info(
                "scan_completed",
                extra={"examined": result.examined, "sent": result.sent, "failed": result.failed},
            )
            return result
