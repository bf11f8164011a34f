"""
Camera client

One instance per viewer (browser tab, kiosk, CLI). Owns the scheduler and
wires transport, session, quality, liveness and the frame loop around the
arbiter.

Goals:
- Public calls never block on the network; intents are posted to the
  scheduler and run one at a time
- Events from the socket thread are re-posted, never handled in place
- The client keeps working on polling when the event channel is down
"""
import logging
import random
import threading
import time
from typing import Callable, Optional

from controller.arbiter import CaptureArbiter, ClientState
from controller.config import ClientConfig
from controller.health import HealthStatus
from controller.liveness import LivenessMonitor
from controller.live_view_worker import LiveViewWorker
from controller.quality import QualityNegotiator
from controller.scheduler import Scheduler, Timer
from controller.session_manager import SessionManager, SessionVerdict
from controller.transport.base import Command, Event, EventType, Transport
from controller.transport.event_transport import EventTransport
from controller.transport.failover import FailoverTransport
from controller.transport.http_slots import HttpSlotClient
from controller.transport.polling_transport import PollingTransport

logger = logging.getLogger(__name__)


def build_transport(config: ClientConfig, scheduler: Scheduler) -> FailoverTransport:
    slots = HttpSlotClient(config.relay_url, timeout=config.request_timeout)
    polling = PollingTransport(slots, scheduler, config)
    event = None
    if config.event_url:
        event = EventTransport(config.event_url, ack_timeout=config.request_timeout)
    return FailoverTransport(event, polling, scheduler, config)


class CameraClient:
    def __init__(
            self,
            config: ClientConfig = ClientConfig(),
            *,
            transport: Optional[Transport] = None,
            clock: Callable[[], float] = time.time,
            scheduler: Optional[Scheduler] = None,
            rng=random,
    ):
        self.config = config
        self._scheduler = scheduler or Scheduler(clock)
        self.transport = transport or build_transport(config, self._scheduler)

        self._health_lock = threading.Lock()
        self._health_status = HealthStatus.ok()
        self._telemetry: dict = {}

        self.liveness = LivenessMonitor(config.offline_threshold)
        self.session = SessionManager(self.transport, self._scheduler.clock, grace=config.session_grace, rng=rng)
        self.quality = QualityNegotiator(self.transport, config.default_quality)
        self.frames = LiveViewWorker(
            self.transport,
            self._scheduler,
            config,
            on_pause=lambda: self.arbiter.pause_for_errors(),
        )
        self.arbiter = CaptureArbiter(
            self.transport,
            self._scheduler,
            self.session,
            self.quality,
            self.frames,
            config,
            report=self._set_health,
        )

        self.transport.set_event_handler(self._on_transport_event)
        self._timers: list[Timer] = []
        self._started = False

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    # ---------- Lifecycle ----------

    def start(self) -> None:
        """Connect and arm the periodic timers. Does not start a thread."""
        if self._started:
            return
        self._started = True
        self.transport.connect()
        self._timers = [
            self._scheduler.call_every(self.config.status_interval, self._status_cycle, immediately=True),
            self._scheduler.call_every(self.config.heartbeat_interval, self.session.heartbeat),
        ]

    def run_forever(self) -> None:
        self.start()
        self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.stop()
        self._shutdown()

    def _shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        if self.arbiter.state.live_enabled:
            self.arbiter.stop_live()
        else:
            self.frames.stop()
            self.session.stop()
        self.transport.close()

    # ---------- Public API ----------

    def start_live(self) -> None:
        self._scheduler.post(self.arbiter.start_live)

    def stop_live(self) -> None:
        self._scheduler.post(self.arbiter.stop_live)

    def capture(self) -> None:
        self._scheduler.post(self.arbiter.request_capture)

    def set_quality(self, preset: str) -> None:
        self._scheduler.post(lambda: self.arbiter.select_quality(preset))

    def set_visible(self, visible: bool) -> None:
        self._scheduler.post(lambda: self.frames.set_visible(visible))

    def update_settings(self, settings: dict) -> None:
        self._scheduler.post(lambda: self._send_settings(settings))

    def get_state(self) -> ClientState:
        return self.arbiter.state

    def get_health(self) -> HealthStatus:
        with self._health_lock:
            return self._health_status

    def get_live_view_frame(self) -> Optional[bytes]:
        return self.frames.get_latest_frame()

    def get_telemetry(self) -> dict:
        return dict(self._telemetry)

    # ---------- Scheduler callbacks ----------

    def _status_cycle(self) -> None:
        self.transport.refresh()
        self._evaluate_liveness()

        if self.session.check() == SessionVerdict.CONCEDE:
            self.arbiter.concede()

        self.arbiter.maybe_resume()

    def _evaluate_liveness(self) -> None:
        transition = self.liveness.evaluate(self._scheduler.clock())
        self.arbiter.on_liveness(transition, self.liveness.online)

    def _on_transport_event(self, event: Event) -> None:
        # May be called from the socket.io thread.
        self._scheduler.post(lambda: self._handle_event(event))

    def _handle_event(self, event: Event) -> None:
        if event.event_type in (EventType.STATUS, EventType.CAMERA_CONNECTED, EventType.CAMERA_DISCONNECTED):
            if event.event_type == EventType.STATUS:
                self._telemetry = dict(event.payload)
            fresh = self.liveness.observe(
                event.payload.get("written_at"),
                received_at=self._scheduler.clock(),
                age=event.payload.get("age"),
            )
            if fresh:
                self._evaluate_liveness()
                self.arbiter.maybe_resume()
        elif event.event_type == EventType.LIVE_FRAME_READY:
            self.frames.refresh_now()
        else:
            self.arbiter.handle_event(event)

    def _send_settings(self, settings: dict) -> None:
        result = self.transport.send(Command.settings(settings))
        if not result.ok:
            logger.warning("Settings update failed: %s", result.error)

    def _set_health(self, status: HealthStatus) -> None:
        with self._health_lock:
            self._health_status = status
