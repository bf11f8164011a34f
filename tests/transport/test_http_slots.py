import os

import pytest

from controller.config import RelayConfig
from controller.slots import CAMERA_SETTINGS, CAPTURE_IMAGE, LIVE_ENABLED, LIVE_FRAME
from controller.state_store import SharedStateStore
from controller.transport.base import CommandStatus, TransportError
from controller.transport.http_slots import HttpSlotClient
from tests.fakes.fake_camera import make_jpeg
from tests.fakes.flask_session import FlaskSession
from web.app import create_app
from web.hub import RelayHub


@pytest.fixture
def relay(tmp_path):
    return create_app(RelayConfig(state_dir=tmp_path), store=SharedStateStore(tmp_path), start_watch=False)


@pytest.fixture
def session(relay):
    return FlaskSession(relay)


@pytest.fixture
def slots(session):
    return HttpSlotClient("http://relay:5000/", timeout=2.5, session=session)


def test_write_then_read_round_trip_with_timestamp(slots, relay):
    assert slots.write(LIVE_ENABLED, "on") is True

    stamped = slots.read(LIVE_ENABLED, "off")

    assert stamped.value == "on"
    assert stamped.written_at == relay.store.modified_at(LIVE_ENABLED)
    assert 0.0 <= stamped.age < 5.0


def test_age_comes_from_relay_clock(tmp_path):
    store = SharedStateStore(tmp_path)
    config = RelayConfig(state_dir=tmp_path)
    hub = RelayHub(store, config, clock=lambda: 1012.5)
    relay = create_app(config, store=store, hub=hub, start_watch=False)
    store.write(LIVE_ENABLED, "on")
    os.utime(store.path_for(LIVE_ENABLED), (1000.0, 1000.0))

    stamped = HttpSlotClient("http://relay", session=FlaskSession(relay)).read(LIVE_ENABLED, "off")

    assert stamped.written_at == 1000.0
    assert stamped.age == 12.5


def test_missing_slot_reads_default(slots):
    stamped = slots.read(LIVE_ENABLED, "off")

    assert (stamped.value, stamped.written_at) == ("off", None)


def test_rejected_write_returns_false(slots):
    assert slots.write(LIVE_ENABLED, "sideways") is False
    assert slots.write("captureTrigger", "on") is False


def test_forbidden_read_raises(slots):
    with pytest.raises(TransportError):
        slots.read("captureTrigger")


def test_requests_use_timeout_and_base_url(slots, session):
    slots.read(LIVE_ENABLED)

    assert session.calls == [("GET", f"/slots/{LIVE_ENABLED}", 2.5)]


def test_capture_accepted_then_busy(slots):
    first = slots.request_capture()
    second = slots.request_capture()

    assert first.ok
    assert first.correlation_id.endswith("-1")
    assert first.requested_at is not None
    assert second.status == CommandStatus.BUSY


def test_latest_result_at(slots, relay):
    assert slots.latest_result_at() is None

    relay.store.write_bytes(CAPTURE_IMAGE, make_jpeg())
    os.utime(relay.store.path_for(CAPTURE_IMAGE), (1700000123.5, 1700000123.5))

    assert slots.latest_result_at() == 1700000123.5


def test_update_settings(slots, relay):
    assert slots.update_settings({"compression": 10}) is True
    assert slots.update_settings({"compression": 99}) is False
    assert relay.store.read(CAMERA_SETTINGS).split()[1] == "10"


def test_fetch_frame(slots, relay):
    assert slots.fetch_frame() is None

    relay.store.write_bytes(LIVE_FRAME, b"\xff\xd8frame")

    assert slots.fetch_frame() == b"\xff\xd8frame"


def test_connection_errors_become_transport_errors(slots, session):
    session.down = True

    with pytest.raises(TransportError):
        slots.read(LIVE_ENABLED)
    with pytest.raises(TransportError):
        slots.write(LIVE_ENABLED, "on")


def test_close_closes_session(slots, session):
    slots.close()

    assert session.closed
