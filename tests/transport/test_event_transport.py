import pytest
from socketio.exceptions import TimeoutError as SocketTimeoutError

from controller.transport.base import Command, CommandStatus, EventType, TransportError
from controller.transport.event_transport import EventTransport
from tests.fakes.fake_socketio import FakeSocketFactory


def connected_transport(replies=None):
    factory = FakeSocketFactory(replies)
    transport = EventTransport("http://relay", client_factory=factory)
    events = []
    transport.set_event_handler(events.append)
    transport.connect()
    return transport, factory.last, events


def test_connect_identifies_as_browser_over_websocket():
    transport, sio, _ = connected_transport()

    assert transport.connected
    assert sio.connect_kwargs["transports"] == ["websocket"]
    assert sio.emitted == [("identify", {"role": "browser"})]


def test_connect_failure_raises_transport_error():
    factory = FakeSocketFactory()
    factory.fail = True
    transport = EventTransport("http://relay", client_factory=factory)

    with pytest.raises(TransportError):
        transport.connect()
    assert not transport.connected


def test_capture_ack_ok_carries_server_id():
    transport, sio, _ = connected_transport(
        {"capture": {"ok": True, "id": "17-1", "requested_at": 1000.5}}
    )

    result = transport.send(Command.capture())

    assert result.ok
    assert result.correlation_id == "17-1"
    assert result.requested_at == 1000.5
    assert sio.calls == [("capture", {})]


def test_capture_ack_busy_is_busy_not_failure():
    transport, _, _ = connected_transport({"capture": {"ok": False, "error": "busy"}})

    assert transport.send(Command.capture()).status == CommandStatus.BUSY


def test_unacknowledged_command_is_failed():
    transport, _, _ = connected_transport({"capture": SocketTimeoutError()})

    result = transport.send(Command.capture())

    assert result.status == CommandStatus.FAILED
    assert "not acknowledged" in result.error


def test_pushed_events_are_dispatched_without_type_field():
    transport, sio, events = connected_transport()

    sio.push("capture_complete", {"type": "capture_complete", "id": "17-1", "result": "pic.jpg"})

    assert events[0].event_type == EventType.CAPTURE_COMPLETE
    assert events[0].payload == {"id": "17-1", "result": "pic.jpg"}


def test_slot_read_and_write_use_acks():
    transport, sio, _ = connected_transport({
        "slot_read": lambda data: {"ok": True, "value": "on", "written_at": 5.0},
        "slot_write": lambda data: {"ok": data["value"] == "8 8 8"},
    })

    stamped = transport.read("liveEnabled", "off")
    assert (stamped.value, stamped.written_at) == ("on", 5.0)
    assert transport.write("liveQuality", "8 8 8") is True
    assert transport.write("liveQuality", "1 1 1") is False


def test_calls_when_disconnected_degrade_quietly():
    transport = EventTransport("http://relay", client_factory=FakeSocketFactory())

    assert transport.read("liveEnabled", "off").value == "off"
    assert transport.write("liveEnabled", "on") is False
    assert transport.fetch_frame() is None
    assert transport.send(Command.capture()).status == CommandStatus.FAILED


def test_server_drop_notifies_disconnect_handler_once():
    transport, sio, _ = connected_transport()
    drops = []
    transport.set_disconnect_handler(lambda: drops.append(1))

    sio.drop()

    assert not transport.connected
    assert drops == [1]


def test_close_does_not_report_a_drop():
    transport, sio, _ = connected_transport()
    drops = []
    transport.set_disconnect_handler(lambda: drops.append(1))

    transport.close()

    assert drops == []
    assert not sio.connected
