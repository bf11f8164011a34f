"""
Cooperative scheduler

All client timers (status refresh, frame refresh, heartbeat, retries) and
callbacks posted from transport threads run here, one at a time. Nothing
scheduled on the same Scheduler ever runs concurrently with anything else
scheduled on it.

Tests drive it with a manual clock and run_pending(); production runs it on
a single daemon thread via start().
"""
import heapq
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from queue import Queue, Empty
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Timer:
    def __init__(self, due: float, callback: Callable[[], None], interval: Optional[float] = None):
        self.due = due
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler:
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._timers = []
        self._seq = itertools.count()
        self._posted: Queue = Queue()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    # ---------- Scheduling ----------

    def call_later(self, delay: float, callback: Callable[[], None]) -> Timer:
        timer = Timer(self.clock() + max(0.0, delay), callback)
        heapq.heappush(self._timers, (timer.due, next(self._seq), timer))
        return timer

    def call_every(self, interval: float, callback: Callable[[], None], *, immediately: bool = False) -> Timer:
        timer = Timer(self.clock() + (0.0 if immediately else interval), callback, interval)
        heapq.heappush(self._timers, (timer.due, next(self._seq), timer))
        return timer

    def post(self, callback: Callable[[], None]) -> None:
        """Thread-safe: queue `callback` to run on the scheduler."""
        self._posted.put(callback)

    # ---------- Running ----------

    def run_pending(self) -> int:
        """Run posted callbacks and every timer due now. Returns how many ran."""
        ran = 0
        while True:
            try:
                callback = self._posted.get_nowait()
            except Empty:
                break
            self._invoke(callback)
            ran += 1

        now = self.clock()
        while self._timers and self._timers[0][0] <= now:
            _, _, timer = heapq.heappop(self._timers)
            if timer.cancelled:
                continue
            if timer.interval is not None:
                timer.due = self.clock() + timer.interval
                heapq.heappush(self._timers, (timer.due, next(self._seq), timer))
            self._invoke(timer.callback)
            ran += 1
        return ran

    def next_due(self) -> Optional[float]:
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)
        return self._timers[0][0] if self._timers else None

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._running = False
        self._posted.put(lambda: None)
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        while self._running:
            self.run_pending()
            due = self.next_due()
            wait = 0.1 if due is None else min(0.1, max(0.0, due - self.clock()))
            try:
                callback = self._posted.get(timeout=wait)
            except Empty:
                continue
            self._invoke(callback)

    @staticmethod
    def _invoke(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            # Keep the loop alive; one bad callback must not stop the client.
            logger.exception("Scheduled callback failed")


@dataclass(frozen=True)
class RetrySchedule:
    """
    Interval schedule for a bounded retry.

    The first `fast_attempts` checks are spaced `fast_interval` apart, the
    rest `slow_interval` growing by `backoff` per attempt up to
    `max_interval`. The retry ends after `max_attempts` checks or once
    `timeout` seconds have passed since start, whichever comes first.
    """
    fast_interval: float = 0.0
    fast_attempts: int = 0
    slow_interval: float = 1.0
    backoff: float = 1.0
    max_interval: Optional[float] = None
    max_attempts: Optional[int] = None
    timeout: Optional[float] = None
    initial_delay: float = 0.0

    def interval_after(self, attempt: int) -> float:
        """Delay before the check following check number `attempt` (1-based)."""
        if attempt < self.fast_attempts:
            return self.fast_interval
        interval = self.slow_interval * (self.backoff ** max(0, attempt - max(self.fast_attempts, 1)))
        if self.max_interval is not None:
            interval = min(interval, self.max_interval)
        return interval


class BoundedRetry(Generic[T]):
    """
    Repeats `check` on a Scheduler until it returns a value (success),
    or the schedule is exhausted (terminal failure). Never retries after a
    terminal outcome. A check that raises counts as an unsuccessful attempt.
    """

    def __init__(
            self,
            scheduler: Scheduler,
            check: Callable[[], Optional[T]],
            schedule: RetrySchedule,
            *,
            on_success: Callable[[T], None],
            on_exhausted: Callable[[int], None],
            on_failure: Optional[Callable[[int], None]] = None,
            name: str = "retry",
    ):
        self._scheduler = scheduler
        self._check = check
        self._schedule = schedule
        self._on_success = on_success
        self._on_exhausted = on_exhausted
        self._on_failure = on_failure
        self.name = name

        self.attempts = 0
        self._started_at: Optional[float] = None
        self._timer: Optional[Timer] = None
        self._done = False

    @property
    def active(self) -> bool:
        return self._started_at is not None and not self._done

    def start(self) -> "BoundedRetry[T]":
        self._started_at = self._scheduler.clock()
        self._timer = self._scheduler.call_later(self._schedule.initial_delay, self._attempt)
        return self

    def cancel(self) -> None:
        self._done = True
        if self._timer is not None:
            self._timer.cancel()

    def _attempt(self) -> None:
        if self._done:
            return
        self.attempts += 1
        try:
            result = self._check()
        except Exception as e:
            logger.debug("%s attempt %d raised: %s", self.name, self.attempts, e)
            result = None

        if result is not None:
            self._done = True
            self._on_success(result)
            return

        if self._on_failure is not None:
            self._on_failure(self.attempts)
        if self._done:
            return

        if self._exhausted():
            self._done = True
            self._on_exhausted(self.attempts)
            return

        self._timer = self._scheduler.call_later(
            self._schedule.interval_after(self.attempts), self._attempt
        )

    def _exhausted(self) -> bool:
        schedule = self._schedule
        if schedule.max_attempts is not None and self.attempts >= schedule.max_attempts:
            return True
        if schedule.timeout is not None:
            return self._scheduler.clock() - self._started_at >= schedule.timeout
        return False
