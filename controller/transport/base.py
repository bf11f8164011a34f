"""
Command/event contract shared by every channel.

The arbiter and session manager are written against Transport only; they
never know whether the event or the polling channel carries their traffic.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, Optional

from controller.state_store import SlotValue


class TransportError(Exception):
    """Channel-level failure (connect, disconnect, request error)."""


class CommandType(Enum):
    CAPTURE = "capture"
    LIVE_CONTROL = "live_control"
    SETTINGS_UPDATE = "settings_update"


class EventType(Enum):
    STATUS = "status"
    CAPTURE_STARTED = "capture_started"
    CAPTURE_COMPLETE = "capture_complete"
    CAPTURE_TIMEOUT = "capture_timeout"
    LIVE_FRAME_READY = "live_frame_ready"
    CAMERA_CONNECTED = "camera_connected"
    CAMERA_DISCONNECTED = "camera_disconnected"


class CommandStatus(Enum):
    OK = auto()
    BUSY = auto()
    FAILED = auto()


@dataclass(frozen=True)
class Command:
    command_type: CommandType
    payload: dict = field(default_factory=dict)

    @staticmethod
    def capture() -> "Command":
        return Command(CommandType.CAPTURE)

    @staticmethod
    def live(start: bool, quality: Optional[str] = None) -> "Command":
        payload = {"action": "start" if start else "stop"}
        if quality is not None:
            payload["quality"] = quality
        return Command(CommandType.LIVE_CONTROL, payload)

    @staticmethod
    def settings(settings: dict) -> "Command":
        return Command(CommandType.SETTINGS_UPDATE, {"settings": dict(settings)})


@dataclass(frozen=True)
class CommandResult:
    status: CommandStatus
    correlation_id: Optional[str] = None
    requested_at: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == CommandStatus.OK

    @staticmethod
    def accepted(correlation_id: Optional[str] = None, requested_at: Optional[float] = None) -> "CommandResult":
        return CommandResult(CommandStatus.OK, correlation_id, requested_at)

    @staticmethod
    def busy() -> "CommandResult":
        return CommandResult(CommandStatus.BUSY, error="busy")

    @staticmethod
    def failed(error: str) -> "CommandResult":
        return CommandResult(CommandStatus.FAILED, error=error)


@dataclass(frozen=True)
class Event:
    event_type: EventType
    payload: dict = field(default_factory=dict)

    @property
    def correlation_id(self) -> Optional[str]:
        value = self.payload.get("id")
        return None if value is None else str(value)

    @staticmethod
    def from_message(message: dict) -> "Event":
        """Build from a JSON message {type, ...fields}. Raises ValueError."""
        fields = dict(message)
        event_type = EventType(fields.pop("type"))
        return Event(event_type, fields)

    def to_message(self) -> dict:
        return {"type": self.event_type.value, **self.payload}


EventHandler = Callable[[Event], None]


class Transport(ABC):
    name = "transport"

    def __init__(self):
        self._event_handler: Optional[EventHandler] = None

    def set_event_handler(self, handler: Optional[EventHandler]) -> None:
        self._event_handler = handler

    def _dispatch(self, event: Event) -> None:
        if self._event_handler is not None:
            self._event_handler(event)

    @property
    @abstractmethod
    def connected(self) -> bool:
        pass

    @abstractmethod
    def connect(self) -> None:
        """Open the channel. Raises TransportError on failure."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    def send(self, command: Command) -> CommandResult:
        pass

    @abstractmethod
    def read(self, slot: str, default: str = "") -> SlotValue:
        """Never raises; returns `default` when the slot cannot be read."""
        pass

    @abstractmethod
    def write(self, slot: str, value: str) -> bool:
        """Never raises; returns False when the write did not land."""
        pass

    @abstractmethod
    def fetch_frame(self) -> Optional[bytes]:
        pass

    def refresh(self) -> None:
        """Give pull-based channels a chance to synthesize events."""
        pass
