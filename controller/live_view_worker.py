import logging
import threading
from typing import Callable, Optional

from controller.config import ClientConfig
from controller.scheduler import Scheduler, Timer

logger = logging.getLogger(__name__)


class LiveViewWorker:
    """
    Owns the live frame refresh loop for one client.

    IMPORTANT:
    - The arbiter decides when the loop runs; this worker never touches state.
    - Runs on the client's scheduler, so ticks never overlap with transitions.
    - The latest frame is readable from any thread.
    """

    def __init__(
            self,
            transport,
            scheduler: Scheduler,
            config: ClientConfig = ClientConfig(),
            *,
            on_pause: Optional[Callable[[], None]] = None,
    ):
        self._transport = transport
        self._scheduler = scheduler
        self._config = config
        self._on_pause = on_pause

        self._timer: Optional[Timer] = None
        self._visible = True
        self._last_fetch_at: Optional[float] = None
        self.consecutive_failures = 0

        self._frame_lock = threading.Lock()
        self._latest_frame: Optional[bytes] = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    @property
    def interval(self) -> float:
        if self._visible:
            return self._config.live_refresh_interval
        return self._config.live_refresh_interval * self._config.hidden_refresh_factor

    def start(self, delay: float = 0.0) -> None:
        self.stop()
        self.consecutive_failures = 0
        # Give the camera a moment to open live view before the first fetch.
        self._timer = self._scheduler.call_later(delay, self._first_tick)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def set_visible(self, visible: bool) -> None:
        if visible == self._visible:
            return
        self._visible = visible
        logger.debug("Frame refresh every %.1fs", self.interval)
        if self.running:
            self._timer.cancel()
            self._timer = self._scheduler.call_every(self.interval, self._tick)

    def get_latest_frame(self) -> Optional[bytes]:
        with self._frame_lock:
            return self._latest_frame

    def refresh_now(self) -> None:
        """Fetch ahead of schedule, at most twice per refresh interval."""
        if not self.running:
            return
        if self._last_fetch_at is not None and self._scheduler.clock() - self._last_fetch_at < self.interval / 2:
            return
        self._tick()

    def _first_tick(self) -> None:
        self._timer = self._scheduler.call_every(self.interval, self._tick)
        self._tick()

    def _tick(self) -> None:
        if not self.running:
            return

        self._last_fetch_at = self._scheduler.clock()
        frame = self._transport.fetch_frame()
        if frame:
            with self._frame_lock:
                self._latest_frame = frame
            self.consecutive_failures = 0
            return

        self.consecutive_failures += 1
        if self.consecutive_failures < self._config.live_error_threshold:
            return

        logger.warning("Live view paused after %d failed frame fetches", self.consecutive_failures)
        self.stop()
        if self._on_pause is not None:
            self._on_pause()
