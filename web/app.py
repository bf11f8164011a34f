"""
Flask application for the camera relay: polling API plus Socket.IO hub.
"""
from pathlib import Path

from flask import Flask, Response, jsonify, request
from flask_socketio import SocketIO

from controller.camera_base import CameraBusyError, CameraError
from controller.config import RelayConfig
from controller.slots import (
    CAMERA_SETTINGS,
    CAPTURE_IMAGE,
    CLIENT_WRITABLE,
    DEFAULT_CAMERA_SETTINGS,
    READABLE,
    SlotFormatError,
    format_settings,
    parse_settings,
    validate_settings,
    validate_slot_write,
)
from controller.state_store import SharedStateStore
from controller.transport.http_slots import SLOT_AGE_HEADER, WRITTEN_AT_HEADER
from web.events import register_events
from web.hub import RelayHub

NO_CACHE = {"Cache-Control": "no-store"}


def create_app(
        config: RelayConfig | None = None,
        *,
        store: SharedStateStore | None = None,
        hub: RelayHub | None = None,
        start_watch: bool = True,
):
    config = config or RelayConfig()
    if store is None:
        store = SharedStateStore(Path(config.state_dir))
    if hub is None:
        hub = RelayHub(store, config)

    app = Flask(__name__)
    socketio = SocketIO(app, async_mode="threading", cors_allowed_origins="*")
    register_events(socketio, hub)

    app.store = store
    app.hub = hub
    app.socketio = socketio

    if start_watch:
        hub.start()

    # ---------- Slots ----------

    @app.route("/write", methods=["POST"])
    def write_slot():
        data = request.get_json(silent=True) or request.form
        slot = (data.get("slot") or "").strip()
        raw = data.get("data")

        if slot not in CLIENT_WRITABLE:
            return "Forbidden slot", 403
        if raw is None:
            return "Missing data", 400
        try:
            value = validate_slot_write(slot, str(raw))
        except SlotFormatError as e:
            return str(e), 400

        if not store.write(slot, value):
            return "Write failed", 500
        return "OK"

    @app.route("/slots/<slot>", methods=["GET"])
    def read_slot(slot: str):
        if slot not in READABLE:
            return "Forbidden slot", 403
        stamped = store.read_stamped(slot, "")
        if stamped.written_at is None:
            return "", 204
        headers = dict(NO_CACHE)
        headers[WRITTEN_AT_HEADER] = repr(stamped.written_at)
        headers[SLOT_AGE_HEADER] = repr(hub.slot_age(stamped.written_at))
        return Response(stamped.value, mimetype="text/plain", headers=headers)

    # ---------- Capture ----------

    @app.route("/capture", methods=["POST"])
    def capture():
        try:
            ticket = hub.request_capture()
        except CameraBusyError:
            return jsonify({"ok": False, "error": "busy"}), 409
        except CameraError as e:
            return jsonify({"ok": False, "error": str(e)}), 500
        return jsonify({"ok": True, **ticket.to_dict()})

    @app.route("/check-new-image", methods=["GET"])
    def check_new_image():
        return Response(repr(hub.latest_result_at()), mimetype="text/plain", headers=NO_CACHE)

    @app.route("/capture-image", methods=["GET"])
    def capture_image():
        data = store.read_bytes(CAPTURE_IMAGE)
        if data is None:
            return "", 404
        return Response(data, mimetype="image/jpeg", headers=NO_CACHE)

    @app.route("/live-view", methods=["GET"])
    def live_view():
        frame = hub.live_frame()
        if not frame:
            return "", 204
        return Response(frame, mimetype="image/jpeg", headers=NO_CACHE)

    # ---------- Settings ----------

    @app.route("/settings", methods=["GET"])
    def get_settings():
        try:
            settings = parse_settings(store.read(CAMERA_SETTINGS, DEFAULT_CAMERA_SETTINGS))
        except SlotFormatError:
            settings = parse_settings(DEFAULT_CAMERA_SETTINGS)
        return jsonify(settings)

    @app.route("/settings", methods=["POST"])
    def update_settings():
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"ok": False, "error": "Expected a JSON object"}), 400
        try:
            settings = validate_settings(data)
        except SlotFormatError as e:
            return jsonify({"ok": False, "error": str(e)}), 400
        if not store.write(CAMERA_SETTINGS, format_settings(settings)):
            return jsonify({"ok": False, "error": "Write failed"}), 500
        return jsonify({"ok": True, "settings": settings})

    # ---------- Status ----------

    @app.route("/status", methods=["GET"])
    def status():
        return jsonify(hub.status())

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify(hub.health())

    return app
