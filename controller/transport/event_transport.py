"""
Event transport

Persistent bidirectional channel to the relay's Socket.IO hub. Commands go
out as acknowledged calls, so "busy" and "accepted" come back on the same
request; events arrive asynchronously on the socket.io thread and are
handed to the registered event handler as-is (the client re-posts them
onto its scheduler).
"""
import logging
from typing import Callable, Optional

import socketio
from socketio.exceptions import (
    ConnectionError as SocketConnectionError,
    SocketIOError,
    TimeoutError as SocketTimeoutError,
)

from controller.state_store import SlotValue
from controller.transport.base import (
    Command,
    CommandResult,
    Event,
    EventType,
    Transport,
    TransportError,
)

logger = logging.getLogger(__name__)


class EventTransport(Transport):
    name = "event"

    def __init__(
            self,
            url: str,
            *,
            ack_timeout: float = 5.0,
            client_factory: Callable[[], "socketio.Client"] = None,
    ):
        super().__init__()
        self.url = url
        self.ack_timeout = ack_timeout
        self._client_factory = client_factory or (lambda: socketio.Client(reconnection=False))
        self._sio = None
        self._on_disconnect: Optional[Callable[[], None]] = None

    def set_disconnect_handler(self, handler: Optional[Callable[[], None]]) -> None:
        self._on_disconnect = handler

    @property
    def connected(self) -> bool:
        return self._sio is not None and bool(self._sio.connected)

    # ---------- Connection ----------

    def connect(self) -> None:
        if self.connected:
            return

        sio = self._client_factory()
        for event_type in EventType:
            sio.on(event_type.value, self._make_handler(event_type))
        sio.on("disconnect", self._handle_disconnect)

        try:
            sio.connect(self.url, transports=["websocket"], wait_timeout=self.ack_timeout)
        except (SocketConnectionError, ValueError) as e:
            raise TransportError(f"Event channel connect failed: {e}") from e

        self._sio = sio
        sio.emit("identify", {"role": "browser"})
        logger.info("Event channel connected to %s", self.url)

    def close(self) -> None:
        sio, self._sio = self._sio, None
        if sio is not None:
            try:
                sio.disconnect()
            except Exception as e:
                logger.debug("Event channel disconnect raised: %s", e)

    def _handle_disconnect(self, *args) -> None:
        if self._sio is None:
            return
        logger.warning("Event channel disconnected")
        self._sio = None
        if self._on_disconnect is not None:
            self._on_disconnect()

    def _make_handler(self, event_type: EventType):
        def handler(data=None):
            payload = dict(data) if isinstance(data, dict) else {}
            payload.pop("type", None)
            self._dispatch(Event(event_type, payload))
        return handler

    # ---------- Calls ----------

    def _call(self, name: str, data: dict):
        if not self.connected:
            raise TransportError("Event channel not connected")
        try:
            return self._sio.call(name, data, timeout=self.ack_timeout)
        except SocketTimeoutError as e:
            raise TransportError(f"{name} was not acknowledged") from e
        except SocketIOError as e:
            raise TransportError(f"{name} failed: {e}") from e

    def send(self, command: Command) -> CommandResult:
        try:
            reply = self._call(command.command_type.value, command.payload) or {}
        except TransportError as e:
            logger.warning("Event %s failed: %s", command.command_type.value, e)
            return CommandResult.failed(str(e))

        if reply.get("ok"):
            return CommandResult.accepted(reply.get("id"), reply.get("requested_at"))
        if reply.get("error") == "busy":
            return CommandResult.busy()
        return CommandResult.failed(reply.get("error") or "rejected")

    def read(self, slot: str, default: str = "") -> SlotValue:
        try:
            reply = self._call("slot_read", {"slot": slot}) or {}
        except TransportError as e:
            logger.debug("Event read %s failed: %s", slot, e)
            return SlotValue(default, None)
        return SlotValue(reply.get("value") or default, reply.get("written_at"), reply.get("age"))

    def write(self, slot: str, value: str) -> bool:
        try:
            reply = self._call("slot_write", {"slot": slot, "value": value}) or {}
        except TransportError as e:
            logger.warning("Event write %s failed: %s", slot, e)
            return False
        return bool(reply.get("ok"))

    def fetch_frame(self) -> Optional[bytes]:
        try:
            frame = self._call("live_frame", {})
        except TransportError as e:
            logger.debug("Event frame fetch failed: %s", e)
            return None
        return frame or None
