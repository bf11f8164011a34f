"""
Camera agent

Runs next to the camera and acts on the shared slots:

- captureTrigger=on  -> clear the trigger, capture a still, publish pic.jpg
- liveEnabled=on     -> publish preview frames to live.jpg at liveQuality
- always             -> publish cameraTelemetry every telemetry_interval

The agent never talks to clients. Its telemetry writes are the heartbeat
everyone else derives camera liveness from.
"""
import logging
import threading
import time
from typing import Callable, Optional

from controller.camera_base import Camera, CameraError
from controller.config import AgentConfig
from controller.quality import DEFAULT_PRESET, resolve_preset
from controller.slots import (
    CAMERA_SETTINGS,
    CAMERA_TELEMETRY,
    CAPTURE_IMAGE,
    CAPTURE_TRIGGER,
    DEFAULT_CAMERA_SETTINGS,
    LIVE_ENABLED,
    LIVE_FRAME,
    LIVE_QUALITY,
    LiveQuality,
    SlotFormatError,
    format_switch,
    format_telemetry,
    parse_quality,
    parse_settings,
    parse_switch,
)
from controller.state_store import SharedStateStore
from controller.telemetry import SystemTelemetry
from imaging.frame_encoder import FrameEncodingError, apply_capture_settings, encode_live_frame

logger = logging.getLogger(__name__)


class CameraAgent:
    def __init__(
            self,
            camera: Camera,
            store: SharedStateStore,
            config: AgentConfig = AgentConfig(),
            *,
            telemetry: Optional[SystemTelemetry] = None,
            clock: Callable[[], float] = time.time,
    ):
        self.camera = camera
        self.store = store
        self.config = config
        self.telemetry = telemetry or SystemTelemetry()
        self._clock = clock

        self.captures_dir = store.root / "captures"
        self.live_active = False
        self._last_telemetry_at: Optional[float] = None
        self._last_frame_at: Optional[float] = None

        self._thread: Optional[threading.Thread] = None
        self._running = False

    # ---------- Lifecycle ----------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._running = False
        if self.live_active:
            self._stop_live()

    def _run(self) -> None:
        while self._running:
            try:
                self.step()
            except Exception:
                # Keep agent loop alive.
                logger.exception("Camera agent step failed")
            time.sleep(self.config.loop_interval)

    # ---------- One pass ----------

    def step(self) -> None:
        now = self._clock()

        if self._last_telemetry_at is None or now - self._last_telemetry_at >= self.config.telemetry_interval:
            self.publish_telemetry()
            self._last_telemetry_at = now

        if parse_switch(self.store.read(CAPTURE_TRIGGER, "off")):
            # Clear first so a slow capture is never taken twice.
            self.store.write(CAPTURE_TRIGGER, format_switch(False))
            if self.live_active:
                self._stop_live()
            self.capture()
            self._last_frame_at = None

        live = parse_switch(self.store.read(LIVE_ENABLED, "off"))
        if live and self.camera.supports_live_view:
            if not self.live_active:
                self._start_live()
            if self.live_active and (
                    self._last_frame_at is None or now - self._last_frame_at >= self.config.live_frame_interval
            ):
                self.publish_frame()
                self._last_frame_at = now
        elif self.live_active:
            self._stop_live()

    # ---------- Actions ----------

    def publish_telemetry(self) -> bool:
        try:
            sample = self.telemetry.sample()
        except Exception as e:
            logger.warning("Telemetry sampling failed: %s", e)
            return False
        return self.store.write(CAMERA_TELEMETRY, format_telemetry(sample))

    def capture(self) -> bool:
        try:
            path = self.camera.capture(self.captures_dir)
        except CameraError as e:
            logger.error("Capture failed: %s", e)
            return False

        try:
            encoded = apply_capture_settings(path.read_bytes(), self._settings())
        except (OSError, FrameEncodingError) as e:
            logger.error("Capture post-processing failed: %s", e)
            return False
        finally:
            path.unlink(missing_ok=True)

        if not self.store.write_bytes(CAPTURE_IMAGE, encoded.data):
            return False
        logger.info("Published capture %dx%d (%d bytes)", encoded.width, encoded.height, encoded.size_bytes)
        return True

    def publish_frame(self) -> bool:
        try:
            frame = self.camera.get_live_view_frame()
            encoded = encode_live_frame(frame, self._quality())
        except (CameraError, FrameEncodingError) as e:
            logger.warning("Live frame failed: %s", e)
            return False
        return self.store.write_bytes(LIVE_FRAME, encoded)

    def _start_live(self) -> None:
        try:
            self.camera.start_live_view()
        except CameraError as e:
            logger.warning("Could not start live view: %s", e)
            return
        self.live_active = True
        self._last_frame_at = None
        logger.info("Live view on")

    def _stop_live(self) -> None:
        try:
            self.camera.stop_live_view()
        except CameraError as e:
            logger.warning("Could not stop live view: %s", e)
        self.live_active = False
        logger.info("Live view off")

    def _quality(self) -> LiveQuality:
        raw = self.store.read(LIVE_QUALITY, "")
        try:
            return parse_quality(raw)
        except SlotFormatError:
            return resolve_preset(DEFAULT_PRESET)

    def _settings(self) -> dict:
        raw = self.store.read(CAMERA_SETTINGS, DEFAULT_CAMERA_SETTINGS)
        try:
            return parse_settings(raw)
        except SlotFormatError:
            logger.warning("Ignoring invalid camera settings %r", raw)
            return parse_settings(DEFAULT_CAMERA_SETTINGS)
