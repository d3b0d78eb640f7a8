"""Tests for rental_batch.schedule -- pure schedule evaluation."""

from datetime import datetime, timedelta, timezone

import pytest

from rental_batch.schedule import IntervalJob, compute_next_run, should_fire

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestIntervalJob:
    def test_interval(self):
        assert IntervalJob("return_reminders", 3600).interval == timedelta(hours=1)

    @pytest.mark.parametrize("seconds", [0, -60])
    def test_non_positive_interval_rejected(self, seconds):
        with pytest.raises(ValueError):
            IntervalJob("bad", seconds)


class TestShouldFire:
    def test_never_run_fires(self):
        assert should_fire(IntervalJob("j", 60), None, T0)

    def test_inactive_never_fires(self):
        assert not should_fire(IntervalJob("j", 60, is_active=False), None, T0)

    def test_fires_at_and_after_due_time(self):
        job = IntervalJob("j", 60)
        assert should_fire(job, T0, T0)
        assert should_fire(job, T0, T0 + timedelta(seconds=1))
        assert not should_fire(job, T0, T0 - timedelta(seconds=1))


def test_compute_next_run():
    job = IntervalJob("overdue_alerts", 6 * 3600)
    assert compute_next_run(job, T0) == T0 + timedelta(hours=6)
