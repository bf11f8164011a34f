"""
Polling transport

The command/event contract expressed as discrete reads and writes against
the relay's slots. Events that the push channel would deliver are
synthesized here: status from the telemetry slot, capture completion from a
bounded "is there a result newer than requested_at?" poll.
"""
import logging
from typing import Optional

from controller.config import ClientConfig
from controller.scheduler import BoundedRetry, RetrySchedule, Scheduler
from controller.slots import CAMERA_TELEMETRY, CAPTURE_IMAGE, LIVE_ENABLED, format_switch, parse_telemetry
from controller.state_store import SlotValue
from controller.transport.base import (
    Command,
    CommandResult,
    CommandType,
    Event,
    EventType,
    Transport,
    TransportError,
)

logger = logging.getLogger(__name__)


class PollingTransport(Transport):
    name = "polling"

    def __init__(self, slots, scheduler: Scheduler, config: ClientConfig = ClientConfig()):
        super().__init__()
        self._slots = slots
        self._scheduler = scheduler
        self._config = config
        self._completion: Optional[BoundedRetry] = None

    @property
    def connected(self) -> bool:
        return True

    def connect(self) -> None:
        pass

    def close(self) -> None:
        if self._completion is not None:
            self._completion.cancel()
            self._completion = None

    # ---------- Commands ----------

    def send(self, command: Command) -> CommandResult:
        try:
            if command.command_type == CommandType.CAPTURE:
                return self._capture()
            if command.command_type == CommandType.LIVE_CONTROL:
                start = command.payload.get("action") == "start"
                if self._slots.write(LIVE_ENABLED, format_switch(start)):
                    return CommandResult.accepted()
                return CommandResult.failed("live control write rejected")
            if command.command_type == CommandType.SETTINGS_UPDATE:
                if self._slots.update_settings(command.payload.get("settings", {})):
                    return CommandResult.accepted()
                return CommandResult.failed("settings rejected")
        except TransportError as e:
            logger.warning("Polling %s failed: %s", command.command_type.value, e)
            return CommandResult.failed(str(e))
        return CommandResult.failed(f"unsupported command {command.command_type}")

    def _capture(self) -> CommandResult:
        result = self._slots.request_capture()
        if not result.ok:
            return result

        requested_at = result.requested_at or self._scheduler.clock()
        correlation_id = result.correlation_id or f"poll-{int(requested_at * 1000)}"
        result = CommandResult.accepted(correlation_id, requested_at)

        self._dispatch(Event(EventType.CAPTURE_STARTED, {"id": correlation_id}))
        self._watch_completion(correlation_id, requested_at)
        return result

    def _watch_completion(self, correlation_id: str, requested_at: float) -> None:
        if self._completion is not None:
            self._completion.cancel()

        def check() -> Optional[float]:
            result_at = self._slots.latest_result_at()
            if result_at is not None and result_at > requested_at:
                return result_at
            return None

        def complete(result_at: float) -> None:
            duration_ms = int(round((result_at - requested_at) * 1000))
            logger.info("Capture %s complete in %dms", correlation_id, duration_ms)
            self._dispatch(Event(EventType.CAPTURE_COMPLETE, {
                "id": correlation_id,
                "result": CAPTURE_IMAGE,
                "duration_ms": duration_ms,
            }))

        def exhausted(attempts: int) -> None:
            logger.warning("Capture %s timed out after %d checks", correlation_id, attempts)
            self._dispatch(Event(EventType.CAPTURE_TIMEOUT, {"id": correlation_id}))

        cfg = self._config
        schedule = RetrySchedule(
            fast_interval=cfg.capture_fast_interval,
            fast_attempts=cfg.capture_fast_attempts,
            slow_interval=cfg.capture_slow_interval,
            timeout=cfg.polling_capture_timeout,
            initial_delay=cfg.capture_fast_interval,
        )
        self._completion = BoundedRetry(
            self._scheduler,
            check,
            schedule,
            on_success=complete,
            on_exhausted=exhausted,
            name=f"capture {correlation_id}",
        ).start()

    # ---------- Slots ----------

    def read(self, slot: str, default: str = "") -> SlotValue:
        try:
            return self._slots.read(slot, default)
        except TransportError as e:
            logger.debug("Polling read %s failed: %s", slot, e)
            return SlotValue(default, None)

    def write(self, slot: str, value: str) -> bool:
        try:
            return self._slots.write(slot, value)
        except TransportError as e:
            logger.warning("Polling write %s failed: %s", slot, e)
            return False

    def fetch_frame(self) -> Optional[bytes]:
        try:
            return self._slots.fetch_frame()
        except TransportError as e:
            logger.debug("Frame fetch failed: %s", e)
            return None

    def refresh(self) -> None:
        stamped = self.read(CAMERA_TELEMETRY, "")
        payload = parse_telemetry(stamped.value, stamped.written_at).to_dict()
        payload["age"] = stamped.age
        self._dispatch(Event(EventType.STATUS, payload))
