"""In-process scheduling of the reminder and overdue scans."""

from rental_batch.schedule import IntervalJob, compute_next_run, should_fire
from rental_batch.scheduler import ScanScheduler

__all__ = ["IntervalJob", "ScanScheduler", "compute_next_run", "should_fire"]
