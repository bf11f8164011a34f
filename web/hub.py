"""
Relay hub

Server-side view of the camera, shared by the HTTP and Socket.IO surfaces:

- capture desk: one pending capture at a time, server-assigned ids,
  completion when pic.jpg is newer than the request, timeout otherwise
- camera watch: connected/disconnected from telemetry staleness
- frame watch: live_frame_ready whenever live.jpg changes

poll() is the only place events are produced; listeners get them after the
hub lock is released.
"""
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from controller.camera_base import CameraBusyError, CameraError
from controller.config import RelayConfig
from controller.liveness import LivenessMonitor, LivenessTransition
from controller.slots import (
    CAMERA_TELEMETRY,
    CAPTURE_IMAGE,
    CAPTURE_TRIGGER,
    LIVE_ENABLED,
    LIVE_FRAME,
    LIVE_QUALITY,
    LIVE_SESSION,
    format_switch,
    parse_session,
    parse_switch,
    parse_telemetry,
)
from controller.state_store import SharedStateStore
from controller.transport.base import Event, EventType
from imaging.frame_encoder import FrameEncodingError, image_dimensions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureTicket:
    id: str
    requested_at: float

    def to_dict(self) -> dict:
        return {"id": self.id, "requested_at": self.requested_at}


class RelayHub:
    def __init__(
            self,
            store: SharedStateStore,
            config: RelayConfig = RelayConfig(),
            *,
            clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.config = config
        self._clock = clock

        self._lock = threading.Lock()
        self._listeners: List[Callable[[Event], None]] = []
        self._seq = itertools.count(1)

        self.pending: Optional[CaptureTicket] = None
        self.liveness = LivenessMonitor(config.offline_threshold)
        self._last_frame_at: Optional[float] = None
        self.browsers = 0

        self._thread: Optional[threading.Thread] = None
        self._running = False

    # ---------- Listeners ----------

    def add_listener(self, listener: Callable[[Event], None]) -> None:
        self._listeners.append(listener)

    def _publish(self, events: List[Event]) -> None:
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Event listener failed for %s", event.event_type.value)

    def browser_connected(self) -> None:
        with self._lock:
            self.browsers += 1

    def browser_disconnected(self) -> None:
        with self._lock:
            self.browsers = max(0, self.browsers - 1)

    # ---------- Capture desk ----------

    def request_capture(self) -> CaptureTicket:
        """
        Raises CameraBusyError while another capture is pending, CameraError
        if the trigger could not be recorded.
        """
        with self._lock:
            if self.pending is not None:
                raise CameraBusyError(f"Capture {self.pending.id} in progress")

            now = self._clock()
            ticket = CaptureTicket(f"{int(now * 1000)}-{next(self._seq)}", now)
            if not self.store.write(CAPTURE_TRIGGER, format_switch(True)):
                raise CameraError("Could not record capture trigger")
            self.pending = ticket

        logger.info("Capture %s requested", ticket.id)
        self._publish([Event(EventType.CAPTURE_STARTED, {"id": ticket.id})])
        return ticket

    def latest_result_at(self) -> float:
        return self.store.modified_at(CAPTURE_IMAGE) or 0.0

    def capture_metadata(self) -> Optional[dict]:
        data = self.store.read_bytes(CAPTURE_IMAGE)
        if data is None:
            return None
        meta = {"result": CAPTURE_IMAGE, "size_bytes": len(data)}
        try:
            meta["width"], meta["height"] = image_dimensions(data)
        except FrameEncodingError as e:
            logger.warning("Capture result is not a readable image: %s", e)
        return meta

    # ---------- Watch ----------

    def poll(self, now: Optional[float] = None) -> List[Event]:
        now = self._clock() if now is None else now
        events: List[Event] = []

        with self._lock:
            events.extend(self._watch_camera(now))
            events.extend(self._watch_capture(now))
            events.extend(self._watch_frames())

        self._publish(events)
        return events

    def _watch_camera(self, now: float) -> List[Event]:
        events = []
        stamped = self.store.read_stamped(CAMERA_TELEMETRY, "")
        fresh = self.liveness.observe(stamped.written_at)
        transition = self.liveness.evaluate(now)

        if transition == LivenessTransition.WENT_ONLINE:
            events.append(Event(EventType.CAMERA_CONNECTED, {
                "written_at": stamped.written_at,
                "age": self.slot_age(stamped.written_at, now),
            }))
        elif transition == LivenessTransition.WENT_OFFLINE:
            events.append(Event(EventType.CAMERA_DISCONNECTED, {
                "written_at": self.liveness.written_at,
                "age": self.slot_age(self.liveness.written_at, now),
            }))

        if fresh:
            payload = parse_telemetry(stamped.value, stamped.written_at).to_dict()
            payload["online"] = self.liveness.online
            payload["age"] = self.slot_age(stamped.written_at, now)
            events.append(Event(EventType.STATUS, payload))
        return events

    def _watch_capture(self, now: float) -> List[Event]:
        ticket = self.pending
        if ticket is None:
            return []

        result_at = self.store.modified_at(CAPTURE_IMAGE)
        if result_at is not None and result_at > ticket.requested_at:
            self.pending = None
            payload = {
                "id": ticket.id,
                "duration_ms": int(round((result_at - ticket.requested_at) * 1000)),
            }
            payload.update(self.capture_metadata() or {"result": CAPTURE_IMAGE})
            logger.info("Capture %s complete in %dms", ticket.id, payload["duration_ms"])
            return [Event(EventType.CAPTURE_COMPLETE, payload)]

        if now - ticket.requested_at >= self.config.capture_timeout:
            self.pending = None
            # A late agent must not fire a capture nobody waits for.
            self.store.write(CAPTURE_TRIGGER, format_switch(False))
            logger.warning("Capture %s timed out", ticket.id)
            return [Event(EventType.CAPTURE_TIMEOUT, {"id": ticket.id})]
        return []

    def _watch_frames(self) -> List[Event]:
        frame_at = self.store.modified_at(LIVE_FRAME)
        if frame_at is None or frame_at == self._last_frame_at:
            return []
        self._last_frame_at = frame_at
        if not parse_switch(self.store.read(LIVE_ENABLED, "off")):
            return []
        return [Event(EventType.LIVE_FRAME_READY, {"written_at": frame_at})]

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running = False

    def _run(self) -> None:
        while self._running:
            try:
                self.poll()
            except Exception:
                logger.exception("Relay watch failed")
            time.sleep(self.config.watch_interval)

    # ---------- Views ----------

    def slot_age(self, written_at: Optional[float], now: Optional[float] = None) -> Optional[float]:
        """How old a write is on the relay's own clock, for readers on other machines."""
        if written_at is None:
            return None
        now = self._clock() if now is None else now
        return round(max(0.0, now - written_at), 3)


    def live_frame(self, now: Optional[float] = None) -> Optional[bytes]:
        """The current live frame, or None when it is stale."""
        now = self._clock() if now is None else now
        frame_at = self.store.modified_at(LIVE_FRAME)
        if frame_at is None or now - frame_at > self.config.offline_threshold:
            return None
        return self.store.read_bytes(LIVE_FRAME)

    def status(self, now: Optional[float] = None) -> dict:
        now = self._clock() if now is None else now
        stamped = self.store.read_stamped(CAMERA_TELEMETRY, "")
        telemetry = parse_telemetry(stamped.value, stamped.written_at).to_dict()
        staleness = None if stamped.written_at is None else round(now - stamped.written_at, 3)
        session = parse_session(self.store.read(LIVE_SESSION, ""))

        with self._lock:
            pending = self.pending

        return {
            "camera": {
                "online": staleness is not None and staleness <= self.config.offline_threshold,
                "staleness": staleness,
                "telemetry": telemetry,
            },
            "live": {
                "enabled": parse_switch(self.store.read(LIVE_ENABLED, "off")),
                "quality": self.store.read(LIVE_QUALITY, "") or None,
                "session": session.session_id if session else None,
            },
            "capture": {
                "busy": pending is not None,
                "pending": pending.to_dict() if pending else None,
                "latest_result_at": self.latest_result_at() or None,
            },
        }

    def health(self) -> dict:
        status = self.status()
        with self._lock:
            browsers = self.browsers
        return {
            "status": "ok",
            "camera_connected": status["camera"]["online"],
            "browsers": browsers,
            "capture_pending": status["capture"]["busy"],
        }
