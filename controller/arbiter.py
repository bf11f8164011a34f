"""
Capture/Live arbiter

Single owner of the client's state. Every transition replaces the frozen
ClientState; nothing else mutates it.

Rules:
- A capture always turns live view off first and never overlaps another
  capture from the same client.
- Live view comes back after a capture only if it was live before, and
  only after the settle delay.
- Offline and live-error pauses are silent: no liveEnabled write, and live
  view resumes by itself once the camera is online again.
- Concession to another client's session is silent and does not resume.
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Callable, Optional

from controller.config import ClientConfig
from controller.health import (
    HealthCode,
    HealthStatus,
    camera_busy,
    capture_failed,
    capture_timed_out,
)
from controller.liveness import LivenessTransition
from controller.quality import QualityNegotiator
from controller.scheduler import Scheduler, Timer
from controller.session_manager import SessionManager
from controller.transport.base import Command, CommandStatus, Event, EventType, Transport

logger = logging.getLogger(__name__)


class ArbiterState(Enum):
    IDLE = auto()
    LIVE_ACTIVE = auto()
    CAPTURING = auto()
    CAPTURE_COMPLETE = auto()
    CAPTURE_TIMEOUT = auto()


@dataclass(frozen=True)
class CaptureRequest:
    requested_at: float
    correlation_id: Optional[str] = None
    completed_at: Optional[float] = None
    result_ref: Optional[str] = None
    duration_ms: Optional[int] = None
    timed_out: bool = False

    @property
    def terminal(self) -> bool:
        return self.completed_at is not None or self.timed_out


@dataclass(frozen=True)
class ClientState:
    state: ArbiterState = ArbiterState.IDLE
    live_enabled: bool = False
    was_live: bool = False
    resume_when_online: bool = False
    restore_pending: bool = False
    online: bool = False
    session_id: Optional[str] = None
    quality: str = "very-low"
    capture: Optional[CaptureRequest] = None
    last_capture: Optional[CaptureRequest] = None

    def to_dict(self) -> dict:
        last = self.last_capture
        return {
            "state": self.state.name,
            "live_enabled": self.live_enabled,
            "online": self.online,
            "busy": self.state == ArbiterState.CAPTURING,
            "quality": self.quality,
            "session_id": self.session_id,
            "last_capture": None if last is None else {
                "id": last.correlation_id,
                "result": last.result_ref,
                "duration_ms": last.duration_ms,
                "timed_out": last.timed_out,
            },
        }


class CaptureArbiter:
    def __init__(
            self,
            transport: Transport,
            scheduler: Scheduler,
            session: SessionManager,
            quality: QualityNegotiator,
            frames,
            config: ClientConfig = ClientConfig(),
            *,
            report: Optional[Callable[[HealthStatus], None]] = None,
    ):
        self._transport = transport
        self._scheduler = scheduler
        self._session = session
        self._quality = quality
        self._frames = frames
        self._config = config
        self._report = report or (lambda status: None)

        self.state = ClientState(quality=quality.preset)
        self._restore_timer: Optional[Timer] = None
        self._watchdog: Optional[Timer] = None

    def _set(self, **changes) -> ClientState:
        self.state = replace(self.state, **changes)
        return self.state

    # ---------- Live view ----------

    def start_live(self) -> bool:
        if self.state.state == ArbiterState.CAPTURING:
            logger.info("Live view start ignored while capturing")
            return False
        if self.state.live_enabled:
            return True

        result = self._transport.send(Command.live(True, self._quality.preset))
        if not result.ok:
            logger.warning("Live view start failed: %s", result.error)
            self._report(HealthStatus.error(
                code=HealthCode.LIVE_START_FAILED,
                message="Failed to start live view",
                instructions=["Check your network connection", "Try again"],
            ))
            return False

        session_id = self._session.start()
        self._quality.apply(force=True)
        self._frames.start(delay=self._config.live_start_delay)
        self._set(
            state=ArbiterState.LIVE_ACTIVE,
            live_enabled=True,
            resume_when_online=False,
            restore_pending=False,
            session_id=session_id,
            quality=self._quality.preset,
        )
        logger.info("Live view started")
        return True

    def stop_live(self) -> None:
        """User-initiated stop: tells the camera and forgets any auto-resume."""
        self._cancel_restore()
        was_enabled = self.state.live_enabled
        self._halt_local()
        self._set(resume_when_online=False, restore_pending=False)
        if was_enabled:
            self._transport.send(Command.live(False))
            logger.info("Live view stopped")

    def silent_stop(self, *, resume: bool) -> None:
        """Stop pushing without writing liveEnabled."""
        if not self.state.live_enabled:
            if not resume:
                self._set(resume_when_online=False)
            return
        self._halt_local()
        self._set(resume_when_online=resume)

    def _halt_local(self) -> None:
        self._frames.stop()
        self._session.stop()
        changes = {"live_enabled": False, "session_id": None}
        if self.state.state == ArbiterState.LIVE_ACTIVE:
            changes["state"] = ArbiterState.IDLE
        self._set(**changes)

    def concede(self) -> None:
        if not self.state.live_enabled:
            return
        logger.info("Conceding live view to another client")
        self.silent_stop(resume=False)
        self._report(HealthStatus.warning(
            code=HealthCode.LIVE_TAKEN_OVER,
            message="Live stream opened in another window",
        ))

    def pause_for_errors(self) -> None:
        logger.info("Pausing live view until the camera answers again")
        self.silent_stop(resume=True)

    def maybe_resume(self) -> bool:
        s = self.state
        if s.resume_when_online and s.online and s.state == ArbiterState.IDLE and not s.restore_pending:
            logger.info("Camera online, resuming live view")
            return self.start_live()
        return False

    def select_quality(self, preset: str) -> bool:
        written = self._quality.select(preset)
        self._set(quality=self._quality.preset)
        return written

    # ---------- Liveness ----------

    def on_liveness(self, transition: Optional[LivenessTransition], online: bool) -> None:
        self._set(online=online)
        if transition == LivenessTransition.WENT_OFFLINE:
            self._report(HealthStatus.warning(
                code=HealthCode.CAMERA_OFFLINE,
                message="Camera went offline",
            ))
            if self.state.live_enabled:
                self.silent_stop(resume=True)
        elif transition == LivenessTransition.WENT_ONLINE:
            self._report(HealthStatus.info(code=HealthCode.CAMERA_ONLINE, message="Camera is back online"))

    # ---------- Capture ----------

    def request_capture(self) -> bool:
        if self.state.state == ArbiterState.CAPTURING:
            logger.info("Capture already in progress, ignoring request")
            return False

        was_live = self.state.live_enabled or self.state.restore_pending
        self._cancel_restore()

        # Camera must leave live view before it can capture.
        self._transport.send(Command.live(False))
        self._frames.stop()
        self._session.stop()

        now = self._scheduler.clock()
        self._set(
            state=ArbiterState.CAPTURING,
            live_enabled=False,
            session_id=None,
            was_live=was_live,
            restore_pending=False,
            capture=CaptureRequest(requested_at=now),
        )

        result = self._transport.send(Command.capture())
        if result.status == CommandStatus.BUSY:
            logger.info("Capture rejected: camera busy")
            self._report(camera_busy())
            self._reset_after_capture()
            return False
        if not result.ok:
            logger.warning("Capture request failed: %s", result.error)
            self._report(capture_failed(result.error or "request failed"))
            self._reset_after_capture()
            return False

        self._set(capture=replace(
            self.state.capture,
            correlation_id=result.correlation_id,
            requested_at=result.requested_at or now,
        ))
        self._watchdog = self._scheduler.call_later(self._capture_timeout(), self._on_watchdog)
        logger.info("Capture %s requested", result.correlation_id)
        return True

    def _capture_timeout(self) -> float:
        return max(self._config.polling_capture_timeout, self._config.event_capture_timeout)

    def handle_event(self, event: Event) -> None:
        if event.event_type == EventType.CAPTURE_COMPLETE:
            capture = self._pending_capture(event)
            if capture is None:
                return
            now = self._scheduler.clock()
            duration_ms = event.payload.get("duration_ms")
            if duration_ms is None:
                duration_ms = int(round((now - capture.requested_at) * 1000))
            done = replace(
                capture,
                completed_at=now,
                result_ref=event.payload.get("result"),
                duration_ms=duration_ms,
            )
            self._set(state=ArbiterState.CAPTURE_COMPLETE, capture=done)
            self._report(HealthStatus.ok())
            logger.info("Capture %s complete (%sms)", done.correlation_id, duration_ms)
            self._finish_capture()

        elif event.event_type == EventType.CAPTURE_TIMEOUT:
            capture = self._pending_capture(event)
            if capture is None:
                return
            self._time_out(capture)

    def _pending_capture(self, event: Event) -> Optional[CaptureRequest]:
        """The in-flight capture this event belongs to, or None to ignore it."""
        capture = self.state.capture
        if self.state.state != ArbiterState.CAPTURING or capture is None or capture.terminal:
            logger.debug("Ignoring %s with no capture in flight", event.event_type.value)
            return None
        if event.correlation_id is not None and capture.correlation_id is not None \
                and event.correlation_id != capture.correlation_id:
            logger.debug("Ignoring %s for foreign capture %s", event.event_type.value, event.correlation_id)
            return None
        return capture

    def _on_watchdog(self) -> None:
        self._watchdog = None
        capture = self.state.capture
        if self.state.state == ArbiterState.CAPTURING and capture is not None and not capture.terminal:
            self._time_out(capture)

    def _time_out(self, capture: CaptureRequest) -> None:
        logger.warning("Capture %s timed out", capture.correlation_id)
        self._set(state=ArbiterState.CAPTURE_TIMEOUT, capture=replace(capture, timed_out=True))
        self._report(capture_timed_out())
        self._finish_capture()

    def _finish_capture(self) -> None:
        if self._watchdog is not None:
            self._watchdog.cancel()
            self._watchdog = None
        self._set(last_capture=self.state.capture)
        self._reset_after_capture()

    def _reset_after_capture(self) -> None:
        was_live = self.state.was_live
        self._set(state=ArbiterState.IDLE, capture=None, was_live=False, restore_pending=was_live)
        if was_live:
            self._restore_timer = self._scheduler.call_later(self._config.settle_delay, self._restore)

    def _restore(self) -> None:
        self._restore_timer = None
        if not self.state.restore_pending:
            return
        self._set(restore_pending=False)
        if not self.start_live():
            # Try again once the camera is reachable.
            self._set(resume_when_online=True)

    def _cancel_restore(self) -> None:
        if self._restore_timer is not None:
            self._restore_timer.cancel()
            self._restore_timer = None
