import time
from typing import Callable


def wait_for(
        condition: Callable[[], bool],
        timeout: float = 5.0,
        interval: float = 0.05,
):
    """
    Wait until condition() returns True or timeout is reached.

    Raises AssertionError on timeout.
    """
    deadline = time.time() + timeout

    while time.time() < deadline:
        if condition():
            return
        time.sleep(interval)

    raise AssertionError("Condition not met before timeout")


class ManualClock:
    """Clock for Scheduler tests. Only moves when told to."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def drain(scheduler) -> None:
    """Run everything runnable at the current time, including follow-up posts."""
    while scheduler.run_pending():
        pass


def advance(scheduler, clock: ManualClock, seconds: float) -> None:
    """
    Move the clock forward, stopping at every timer due on the way so that
    each one runs at its own time.
    """
    advance_all([scheduler], clock, seconds)


def advance_all(schedulers, clock: ManualClock, seconds: float) -> None:
    """advance() for several clients sharing one clock."""
    end = clock.now + seconds
    for scheduler in schedulers:
        drain(scheduler)
    while True:
        dues = [d for d in (s.next_due() for s in schedulers) if d is not None and d <= end]
        if not dues:
            break
        clock.now = max(clock.now, min(dues))
        for scheduler in schedulers:
            drain(scheduler)
    clock.now = end
    for scheduler in schedulers:
        drain(scheduler)
