"""
Pure schedule evaluation for the scan jobs.

Contract:
    ``should_fire(job, next_run_at, as_of)`` and ``compute_next_run()`` are
    pure: no I/O, no clock reads.  The scheduler passes in the time.

Architecture: rental_batch.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class IntervalJob:
    """A named job that runs every ``interval_seconds``."""

    name: str
    interval_seconds: int
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive: {self.interval_seconds}")

    @property
    def interval(self) -> timedelta:
        return timedelta(seconds=self.interval_seconds)


def should_fire(job: IntervalJob, next_run_at: datetime | None, as_of: datetime) -> bool:
    """Determine if a job is due at ``as_of``.

    Rules:
        - Inactive jobs never fire.
        - A job that has never run fires immediately.
        - Otherwise it fires once ``as_of >= next_run_at``.
    """
    if not job.is_active:
        return False
    if next_run_at is None:
        return True
    return as_of >= next_run_at


def compute_next_run(job: IntervalJob, last_run_at: datetime) -> datetime:
    """Next due time after a run at ``last_run_at``."""
    return last_run_at + job.interval
