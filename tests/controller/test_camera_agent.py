from controller.camera_agent import CameraAgent
from controller.config import AgentConfig
from controller.slots import (
    CAMERA_SETTINGS,
    CAMERA_TELEMETRY,
    CAPTURE_IMAGE,
    CAPTURE_TRIGGER,
    LIVE_ENABLED,
    LIVE_FRAME,
    LIVE_QUALITY,
    CameraTelemetry,
)
from controller.state_store import SharedStateStore
from imaging.frame_encoder import image_dimensions
from tests.fakes.fake_camera import FakeCamera
from tests.helpers import ManualClock


class StubTelemetry:
    def __init__(self):
        self.samples = 0

    def sample(self) -> CameraTelemetry:
        self.samples += 1
        return CameraTelemetry("42%", "51.3C", "0.52", "37%")


def make_agent(tmp_path, camera=None, **config):
    clock = ManualClock(1000.0)
    store = SharedStateStore(tmp_path / "state")
    camera = camera or FakeCamera()
    telemetry = StubTelemetry()
    agent = CameraAgent(camera, store, AgentConfig(**config), telemetry=telemetry, clock=clock)
    return agent, store, camera, telemetry, clock


def test_telemetry_is_published_on_interval(tmp_path):
    agent, store, _, telemetry, clock = make_agent(tmp_path)

    agent.step()
    assert store.read(CAMERA_TELEMETRY) == "42%,51.3C,0.52,37%"

    clock.advance(1.5)
    agent.step()
    assert telemetry.samples == 1

    clock.advance(0.5)
    agent.step()
    assert telemetry.samples == 2


def test_trigger_captures_once_and_publishes_result(tmp_path):
    agent, store, camera, _, _ = make_agent(tmp_path)
    store.write(CAPTURE_TRIGGER, "on")

    agent.step()
    agent.step()

    assert store.read(CAPTURE_TRIGGER) == "off"
    assert len(camera.captured_images) == 1
    assert not camera.captured_images[0].exists()
    assert image_dimensions(store.read_bytes(CAPTURE_IMAGE)) == (640, 480)


def test_capture_applies_persisted_settings(tmp_path):
    agent, store, _, _, _ = make_agent(tmp_path)
    store.write(CAMERA_SETTINGS, "1 5 100 0 90 none 25")
    store.write(CAPTURE_TRIGGER, "on")

    agent.step()

    assert image_dimensions(store.read_bytes(CAPTURE_IMAGE)) == (480, 640)


def test_invalid_settings_fall_back_to_defaults(tmp_path):
    agent, store, _, _, _ = make_agent(tmp_path)
    store.write(CAMERA_SETTINGS, "not settings")
    store.write(CAPTURE_TRIGGER, "on")

    agent.step()

    assert image_dimensions(store.read_bytes(CAPTURE_IMAGE)) == (640, 480)


def test_busy_camera_clears_trigger_without_result(tmp_path):
    camera = FakeCamera()
    camera.busy = True
    agent, store, _, _, _ = make_agent(tmp_path, camera)
    store.write(CAPTURE_TRIGGER, "on")

    agent.step()

    assert store.read(CAPTURE_TRIGGER) == "off"
    assert store.read_bytes(CAPTURE_IMAGE) is None


def test_live_frames_follow_negotiated_quality(tmp_path):
    agent, store, camera, _, _ = make_agent(tmp_path)
    store.write(LIVE_ENABLED, "on")
    store.write(LIVE_QUALITY, "640 480 16")

    agent.step()

    assert camera.live_view_active
    assert agent.live_active
    assert image_dimensions(store.read_bytes(LIVE_FRAME)) == (640, 480)


def test_live_frames_default_to_lowest_preset(tmp_path):
    agent, store, _, _, _ = make_agent(tmp_path)
    store.write(LIVE_ENABLED, "on")
    store.write(LIVE_QUALITY, "garbage")

    agent.step()

    assert image_dimensions(store.read_bytes(LIVE_FRAME)) == (480, 360)


def test_live_frames_are_rate_limited(tmp_path):
    agent, store, camera, _, clock = make_agent(tmp_path, live_frame_interval=0.25)
    store.write(LIVE_ENABLED, "on")

    agent.step()
    clock.advance(0.125)
    agent.step()
    assert camera.frames_served == 1

    clock.advance(0.125)
    agent.step()
    assert camera.frames_served == 2


def test_live_off_stops_camera_preview(tmp_path):
    agent, store, camera, _, _ = make_agent(tmp_path)
    store.write(LIVE_ENABLED, "on")
    agent.step()

    store.write(LIVE_ENABLED, "off")
    agent.step()

    assert not camera.live_view_active
    assert not agent.live_active


def test_capture_runs_with_preview_stopped(tmp_path):
    agent, store, camera, _, _ = make_agent(tmp_path)
    store.write(LIVE_ENABLED, "on")
    agent.step()
    assert camera.live_view_active

    store.write(LIVE_ENABLED, "off")
    store.write(CAPTURE_TRIGGER, "on")
    agent.step()

    assert camera.live_during_capture == [False]
    assert not camera.live_view_active
    assert not agent.live_active


def test_preview_resumes_after_capture_while_live_stays_on(tmp_path):
    agent, store, camera, _, _ = make_agent(tmp_path)
    store.write(LIVE_ENABLED, "on")
    agent.step()

    store.write(CAPTURE_TRIGGER, "on")
    agent.step()

    assert camera.live_during_capture == [False]
    assert camera.live_view_active
    assert agent.live_active


def test_disconnected_camera_keeps_publishing_telemetry(tmp_path):
    camera = FakeCamera()
    camera.connected = False
    agent, store, _, _, _ = make_agent(tmp_path, camera)
    store.write(LIVE_ENABLED, "on")

    agent.step()

    assert not agent.live_active
    assert store.read_bytes(LIVE_FRAME) is None
    assert store.read(CAMERA_TELEMETRY) != ""
