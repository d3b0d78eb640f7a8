"""Helpers for multi-threaded race tests."""

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from rental_kernel.exceptions import RentalEngineError


@pytest.fixture
def race():
    """
    Run callables in parallel threads released together by a barrier.

    Returns a list of ``(outcome, value)`` pairs in submission order, where
    outcome is ``"ok"`` or ``"error"`` and value is the return value or the
    RentalEngineError raised.
    """

    def _race(*calls):
        barrier = Barrier(len(calls))

        def runner(call):
            barrier.wait()
            try:
                return ("ok", call())
            except RentalEngineError as exc:
                return ("error", exc)

        with ThreadPoolExecutor(max_workers=len(calls)) as pool:
            futures = [pool.submit(runner, call) for call in calls]
            return [future.result() for future in futures]

    return _race
