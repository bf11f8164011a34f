"""
Failover policy

Prefers the event channel. Every failed connect or dropped connection
counts against `consecutive_failures`; reconnects back off from
`reconnect_delay` by `reconnect_backoff` up to `max_reconnect_delay`. At
`failure_threshold` the client switches to polling for `fallback_cooldown`
seconds, then silently tries the event channel once more. A successful
connect resets the counter.

While the event channel is down but not yet given up on, commands are
served by the polling channel, so callers never see the gap.
"""
import logging
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Optional

from controller.config import ClientConfig
from controller.scheduler import BoundedRetry, RetrySchedule, Scheduler, Timer
from controller.state_store import SlotValue
from controller.transport.base import Command, CommandResult, Transport
from controller.transport.event_transport import EventTransport
from controller.transport.polling_transport import PollingTransport

logger = logging.getLogger(__name__)


class ChannelMode(Enum):
    EVENT = auto()
    POLLING = auto()


@dataclass(frozen=True)
class ConnectionChannel:
    mode: ChannelMode = ChannelMode.EVENT
    consecutive_failures: int = 0


class FailoverTransport(Transport):
    name = "failover"

    def __init__(
            self,
            event: Optional[EventTransport],
            polling: PollingTransport,
            scheduler: Scheduler,
            config: ClientConfig = ClientConfig(),
    ):
        super().__init__()
        self._event = event
        self._polling = polling
        self._scheduler = scheduler
        self._config = config

        self.channel = ConnectionChannel(
            mode=ChannelMode.EVENT if event is not None else ChannelMode.POLLING
        )
        self._reconnect: Optional[BoundedRetry] = None
        self._cooldown: Optional[Timer] = None
        self._closed = False

        polling.set_event_handler(self._dispatch)
        if event is not None:
            event.set_event_handler(self._dispatch)
            event.set_disconnect_handler(lambda: scheduler.post(self._handle_drop))

    # ---------- Channel selection ----------

    @property
    def active(self) -> Transport:
        if (
                self._event is not None
                and self.channel.mode == ChannelMode.EVENT
                and self._event.connected
        ):
            return self._event
        return self._polling

    @property
    def connected(self) -> bool:
        return self.active.connected

    def connect(self) -> None:
        self._closed = False
        if self._event is None:
            return
        self._start_reconnect(initial_delay=0.0)

    def close(self) -> None:
        self._closed = True
        if self._reconnect is not None:
            self._reconnect.cancel()
        if self._cooldown is not None:
            self._cooldown.cancel()
        if self._event is not None:
            self._event.close()
        self._polling.close()

    # ---------- Failure accounting ----------

    def _record_failure(self, _attempt: int = 0) -> None:
        self.channel = replace(self.channel, consecutive_failures=self.channel.consecutive_failures + 1)
        logger.info(
            "Event channel failure %d/%d",
            self.channel.consecutive_failures,
            self._config.failure_threshold,
        )

    def _record_success(self, _result=None) -> None:
        if self.channel.mode == ChannelMode.POLLING:
            logger.info("Event channel restored, leaving polling mode")
        self.channel = ConnectionChannel(mode=ChannelMode.EVENT, consecutive_failures=0)

    def _try_connect(self) -> Optional[bool]:
        self._event.connect()
        return True

    def _start_reconnect(self, initial_delay: float) -> None:
        if self._reconnect is not None:
            self._reconnect.cancel()

        remaining = self._config.failure_threshold - self.channel.consecutive_failures
        if remaining <= 0:
            self._fall_back()
            return

        cfg = self._config
        schedule = RetrySchedule(
            slow_interval=cfg.reconnect_delay,
            backoff=cfg.reconnect_backoff,
            max_interval=cfg.max_reconnect_delay,
            max_attempts=remaining,
            initial_delay=initial_delay,
        )
        self._reconnect = BoundedRetry(
            self._scheduler,
            self._try_connect,
            schedule,
            on_success=self._record_success,
            on_failure=self._record_failure,
            on_exhausted=lambda _attempts: self._fall_back(),
            name="event reconnect",
        ).start()

    def _handle_drop(self) -> None:
        if self._closed:
            return
        self._record_failure()
        if self.channel.mode == ChannelMode.EVENT:
            self._start_reconnect(initial_delay=self._config.reconnect_delay)

    def _fall_back(self) -> None:
        if self._closed:
            return
        if self.channel.mode != ChannelMode.POLLING:
            logger.warning(
                "Switching to polling after %d event channel failures",
                self.channel.consecutive_failures,
            )
        self.channel = replace(self.channel, mode=ChannelMode.POLLING)
        if self._cooldown is not None:
            self._cooldown.cancel()
        self._cooldown = self._scheduler.call_later(self._config.fallback_cooldown, self._retry_event)

    def _retry_event(self) -> None:
        if self._closed:
            return
        logger.info("Retrying event channel")
        self._reconnect = BoundedRetry(
            self._scheduler,
            self._try_connect,
            RetrySchedule(max_attempts=1),
            on_success=self._record_success,
            on_failure=self._record_failure,
            on_exhausted=lambda _attempts: self._fall_back(),
            name="event retry",
        ).start()

    # ---------- Contract ----------

    def send(self, command: Command) -> CommandResult:
        return self.active.send(command)

    def read(self, slot: str, default: str = "") -> SlotValue:
        return self.active.read(slot, default)

    def write(self, slot: str, value: str) -> bool:
        return self.active.write(slot, value)

    def fetch_frame(self) -> Optional[bytes]:
        return self.active.fetch_frame()

    def refresh(self) -> None:
        self.active.refresh()
