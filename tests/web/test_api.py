import json
import os
import time

import pytest

from controller.config import RelayConfig
from controller.slots import (
    CAMERA_SETTINGS,
    CAMERA_TELEMETRY,
    CAPTURE_IMAGE,
    CAPTURE_TRIGGER,
    LIVE_ENABLED,
    LIVE_FRAME,
    LIVE_QUALITY,
)
from controller.state_store import SharedStateStore
from controller.transport.http_slots import SLOT_AGE_HEADER, WRITTEN_AT_HEADER
from tests.fakes.fake_camera import make_jpeg
from web.app import create_app


@pytest.fixture
def app(tmp_path):
    store = SharedStateStore(tmp_path)
    app = create_app(RelayConfig(state_dir=tmp_path), store=store, start_watch=False)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


def test_write_normalizes_and_stores(client, app):
    response = client.post("/write", data={"slot": LIVE_ENABLED, "data": " ON "})

    assert response.status_code == 200
    assert response.get_data(as_text=True) == "OK"
    assert app.store.read(LIVE_ENABLED) == "on"


def test_write_accepts_json_body(client, app):
    response = client.post(
        "/write",
        data=json.dumps({"slot": LIVE_QUALITY, "data": "640 480 16"}),
        content_type="application/json",
    )

    assert response.status_code == 200
    assert app.store.read(LIVE_QUALITY) == "640 480 16"


@pytest.mark.parametrize("slot", [CAPTURE_TRIGGER, CAMERA_TELEMETRY, "pic.jpg", ""])
def test_write_refuses_agent_owned_slots(client, slot):
    response = client.post("/write", data={"slot": slot, "data": "on"})

    assert response.status_code == 403


@pytest.mark.parametrize("form", [
    {"slot": LIVE_ENABLED},
    {"slot": LIVE_ENABLED, "data": "maybe"},
    {"slot": LIVE_QUALITY, "data": "10 10 10"},
    {"slot": "liveSession", "data": "not-a-session"},
])
def test_write_rejects_bad_values(client, app, form):
    response = client.post("/write", data=form)

    assert response.status_code == 400
    assert app.store.read(form["slot"]) == ""


def test_read_missing_slot_is_no_content(client):
    assert client.get(f"/slots/{LIVE_ENABLED}").status_code == 204


def test_read_returns_value_and_written_at(client, app):
    app.store.write(CAMERA_TELEMETRY, "42%,51.3C,0.52,37%")

    response = client.get(f"/slots/{CAMERA_TELEMETRY}")

    assert response.status_code == 200
    assert response.get_data(as_text=True) == "42%,51.3C,0.52,37%"
    assert float(response.headers[WRITTEN_AT_HEADER]) == app.store.modified_at(CAMERA_TELEMETRY)
    assert 0.0 <= float(response.headers[SLOT_AGE_HEADER]) < 5.0


def test_read_refuses_unknown_slot(client):
    assert client.get(f"/slots/{CAPTURE_TRIGGER}").status_code == 403


def test_capture_assigns_id_and_rejects_overlap(client, app):
    first = client.post("/capture")

    assert first.status_code == 200
    body = first.get_json()
    assert body["ok"] is True
    assert body["id"].endswith("-1")
    assert app.store.read(CAPTURE_TRIGGER) == "on"

    second = client.post("/capture")
    assert second.status_code == 409
    assert second.get_json() == {"ok": False, "error": "busy"}


def test_capture_accepted_again_after_completion(client, app):
    ticket = client.post("/capture").get_json()
    app.store.write_bytes(CAPTURE_IMAGE, make_jpeg())
    later = ticket["requested_at"] + 1
    os.utime(app.store.path_for(CAPTURE_IMAGE), (later, later))
    app.hub.poll()

    response = client.post("/capture")

    assert response.status_code == 200
    assert response.get_json()["id"].endswith("-2")


def test_check_new_image_and_capture_image(client, app):
    assert client.get("/check-new-image").get_data(as_text=True) == "0.0"
    assert client.get("/capture-image").status_code == 404

    jpeg = make_jpeg()
    app.store.write_bytes(CAPTURE_IMAGE, jpeg)

    assert float(client.get("/check-new-image").get_data(as_text=True)) == app.store.modified_at(CAPTURE_IMAGE)
    response = client.get("/capture-image")
    assert response.data == jpeg
    assert response.mimetype == "image/jpeg"
    assert response.headers["Cache-Control"] == "no-store"


def test_live_view_serves_only_fresh_frames(client, app):
    assert client.get("/live-view").status_code == 204

    app.store.write_bytes(LIVE_FRAME, b"\xff\xd8frame")
    assert client.get("/live-view").data == b"\xff\xd8frame"

    stale = time.time() - 60
    os.utime(app.store.path_for(LIVE_FRAME), (stale, stale))
    assert client.get("/live-view").status_code == 204


def test_settings_default_and_partial_update(client, app):
    assert client.get("/settings").get_json()["effect"] == "none"

    response = client.post("/settings", json={"rotation": 180, "effect": "negative"})

    assert response.status_code == 200
    assert response.get_json()["settings"]["rotation"] == 180
    assert app.store.read(CAMERA_SETTINGS) == "3 5 33333 -35 180 negative 100"


@pytest.mark.parametrize("body", [{"rotation": 999}, {"effect": "sepia"}, ["not", "a", "dict"]])
def test_settings_rejects_invalid(client, body):
    response = client.post("/settings", json=body)

    assert response.status_code == 400
    assert response.get_json()["ok"] is False


def test_status_reports_camera_live_and_capture(client, app):
    app.store.write(CAMERA_TELEMETRY, "42%,51.3C,0.52,37%")
    app.store.write(LIVE_ENABLED, "on")
    app.store.write("liveSession", "1700000000000:abc123")

    data = client.get("/status").get_json()

    assert data["camera"]["online"] is True
    assert data["camera"]["telemetry"]["memory"] == "42%"
    assert data["live"] == {"enabled": True, "quality": None, "session": "abc123"}
    assert data["capture"]["busy"] is False


def test_health_counts_pending_capture(client):
    client.post("/capture")

    data = client.get("/health").get_json()

    assert data["status"] == "ok"
    assert data["camera_connected"] is False
    assert data["capture_pending"] is True
