"""
ScanScheduler -- in-process polling scheduler for the scanner jobs.

Contract:
    Polls on a fixed tick, evaluates ``should_fire()`` (pure) for the
    reminder job (hourly by default) and the overdue job (every 6 hours by
    default), and runs the due ones through the OverdueScanner.

Architecture: rental_batch.  Uses rental_batch.schedule for pure
    evaluation and rental_services.overdue_scanner for execution.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - Next-run times live in memory only.  Restarting the process may run a
      scan early, which is harmless: the per-order markers the scanner
      claims are the durable record of what has been sent.
    - Graceful shutdown: ``stop()`` is honoured between jobs.
"""

from __future__ import annotations

import threading
from datetime import datetime

from rental_kernel.config import EngineConfig
from rental_kernel.domain.clock import Clock, SystemClock
from rental_kernel.logging_config import LogContext, get_logger
from rental_batch.schedule import IntervalJob, compute_next_run, should_fire
from rental_services.overdue_scanner import OVERDUE_JOB, REMINDER_JOB, OverdueScanner, ScanResult

logger = get_logger("batch.scheduler")


class ScanScheduler:
    """Polling scheduler for the reminder and overdue scans.

    Contract:
        - ``tick()`` runs every due job once and returns their results.
        - ``start()`` / ``stop()`` for background thread operation.
        - ``start()`` is a no-op when ``config.scheduler_enabled`` is false.

    Non-goals:
        - NOT a distributed scheduler (no leader election); running several
          is safe only because the scanner's claims are atomic.
    """

    def __init__(
        self,
        scanner: OverdueScanner,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
    ):
        self._scanner = scanner
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._jobs = {
            REMINDER_JOB: IntervalJob(REMINDER_JOB, self._config.reminder_interval_seconds),
            OVERDUE_JOB: IntervalJob(OVERDUE_JOB, self._config.overdue_interval_seconds),
        }
        self._runners = {
            REMINDER_JOB: scanner.scan_reminders,
            OVERDUE_JOB: scanner.scan_overdue,
        }
        self._next_run: dict[str, datetime | None] = {name: None for name in self._jobs}

    @property
    def jobs(self) -> list[IntervalJob]:
        return list(self._jobs.values())

    def next_run_at(self, job_name: str) -> datetime | None:
        return self._next_run[job_name]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def tick(self) -> list[ScanResult]:
        """Run every due job (public for testing)."""
        now = self._clock.now()
        results = []

        for name, job in self._jobs.items():
            if self._stop_event.is_set():
                break
            if not should_fire(job, self._next_run[name], now):
                continue

            with LogContext.bind(job_name=name):
                try:
                    results.append(self._runners[name](now))
                except Exception:
                    logger.exception("scheduler_job_failed")
                self._next_run[name] = compute_next_run(job, now)
                logger.info(
                    "schedule_fired",
                    extra={"next_run_at": self._next_run[name]},
                )

        return results

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if not self._config.scheduler_enabled:
            logger.info("scheduler_disabled")
            return
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="scan-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_failed")
            self._stop_event.wait(timeout=self._tick_interval)
