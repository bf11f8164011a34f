"""
Socket.IO surface of the relay (the event channel).

Commands are acknowledged calls: the handler's return value is the ack, so
"busy" and "accepted" reach the caller on the same request. Hub events are
broadcast to every connected client as {type, ...} messages.
"""
import logging

from flask import request
from flask_socketio import SocketIO

from controller.camera_base import CameraBusyError, CameraError
from controller.quality import QUALITY_PRESETS
from controller.slots import (
    CAMERA_SETTINGS,
    CLIENT_WRITABLE,
    LIVE_ENABLED,
    LIVE_QUALITY,
    READABLE,
    SlotFormatError,
    format_quality,
    format_settings,
    format_switch,
    validate_settings,
    validate_slot_write,
)
from controller.transport.base import CommandType, Event
from web.hub import RelayHub

logger = logging.getLogger(__name__)


def register_events(socketio: SocketIO, hub: RelayHub) -> None:
    store = hub.store
    browsers = set()

    def broadcast(event: Event) -> None:
        socketio.emit(event.event_type.value, event.to_message())

    hub.add_listener(broadcast)

    @socketio.on("identify")
    def identify(data=None):
        role = (data or {}).get("role")
        if role == "browser" and request.sid not in browsers:
            browsers.add(request.sid)
            hub.browser_connected()
            logger.info("Browser %s connected (%d total)", request.sid, len(browsers))
        return {"ok": True}

    @socketio.on("disconnect")
    def disconnect(*_args):
        if request.sid in browsers:
            browsers.discard(request.sid)
            hub.browser_disconnected()
            logger.info("Browser %s disconnected", request.sid)

    # ---------- Commands ----------

    @socketio.on(CommandType.CAPTURE.value)
    def capture(_data=None):
        try:
            ticket = hub.request_capture()
        except CameraBusyError:
            return {"ok": False, "error": "busy"}
        except CameraError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": True, **ticket.to_dict()}

    @socketio.on(CommandType.LIVE_CONTROL.value)
    def live_control(data=None):
        data = data or {}
        action = data.get("action")
        if action not in ("start", "stop"):
            return {"ok": False, "error": "action must be start or stop"}

        preset = data.get("quality")
        if action == "start" and preset in QUALITY_PRESETS:
            store.write(LIVE_QUALITY, format_quality(QUALITY_PRESETS[preset]))
        return {"ok": store.write(LIVE_ENABLED, format_switch(action == "start"))}

    @socketio.on(CommandType.SETTINGS_UPDATE.value)
    def settings_update(data=None):
        try:
            settings = validate_settings((data or {}).get("settings") or {})
        except SlotFormatError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": store.write(CAMERA_SETTINGS, format_settings(settings))}

    # ---------- Slots ----------

    @socketio.on("slot_read")
    def slot_read(data=None):
        slot = (data or {}).get("slot")
        if slot not in READABLE:
            return {"ok": False, "error": "forbidden"}
        stamped = store.read_stamped(slot, "")
        return {
            "ok": True,
            "value": stamped.value,
            "written_at": stamped.written_at,
            "age": hub.slot_age(stamped.written_at),
        }

    @socketio.on("slot_write")
    def slot_write(data=None):
        data = data or {}
        slot = data.get("slot")
        if slot not in CLIENT_WRITABLE:
            return {"ok": False, "error": "forbidden"}
        try:
            value = validate_slot_write(slot, str(data.get("value", "")))
        except SlotFormatError as e:
            return {"ok": False, "error": str(e)}
        return {"ok": store.write(slot, value)}

    @socketio.on("live_frame")
    def live_frame(_data=None):
        return hub.live_frame()
