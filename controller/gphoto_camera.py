import logging
import subprocess
import threading
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from controller.camera_base import Camera, CameraBusyError, CameraError

logger = logging.getLogger(__name__)

_SAVING_PREFIX = "Saving file as "
_BUSY_MARKERS = ("Could not claim the USB device", "Device Busy")


def _is_jpeg_file(path: Path) -> bool:
    try:
        with path.open("rb") as fh:
            return fh.read(2) == b"\xff\xd8"
    except OSError:
        return False


def _select_jpeg(paths: List[Path]) -> Optional[Path]:
    """Pick the JPEG out of what gphoto2 downloaded (RAW+JPEG shoots two files)."""
    for path in paths:
        if path.suffix.lower() in (".jpg", ".jpeg"):
            return path
    for path in paths:
        if _is_jpeg_file(path):
            return path
    return None


def _saved_paths(stdout: bytes) -> List[Path]:
    paths = []
    for line in stdout.decode(errors="ignore").splitlines():
        line = line.strip()
        if line.startswith(_SAVING_PREFIX):
            paths.append(Path(line[len(_SAVING_PREFIX):].strip()))
    return paths


def _error_for(e: subprocess.CalledProcessError, action: str) -> CameraError:
    detail = (e.stderr or b"").decode(errors="ignore").strip()
    if any(marker in detail for marker in _BUSY_MARKERS):
        return CameraBusyError(f"Camera busy: {detail}")
    return CameraError(f"Camera {action} failed: {detail}")


class GPhotoCamera(Camera):
    supports_live_view = True

    def __init__(self, timeout: int = 10):
        self.timeout = timeout
        self._io_lock = threading.Lock()

    def health_check(self) -> bool:
        try:
            subprocess.run(
                ["gphoto2", "--summary"],
                check=True,
                timeout=5,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            return True
        except Exception:
            return False

    def capture(self, output_dir: Path) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)

        # %n keeps RAW+JPEG pairs from overwriting each other
        template = output_dir / datetime.now().strftime("capture_%Y%m%d_%H%M%S_%%n.%%C")
        cmd = [
            "gphoto2",
            "--capture-image-and-download",
            "--force-overwrite",
            "--filename",
            str(template),
        ]

        try:
            with self._io_lock:
                result = subprocess.run(
                    cmd,
                    check=True,
                    timeout=self.timeout,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
        except subprocess.TimeoutExpired as e:
            raise CameraError("Camera capture timed out") from e
        except subprocess.CalledProcessError as e:
            raise _error_for(e, "capture") from e

        saved = _saved_paths(result.stdout)
        if not saved:
            raise CameraError("Camera reported success but no files were downloaded")

        jpeg = _select_jpeg(saved)
        if jpeg is None:
            raise CameraError("No JPEG file was downloaded")
        if not jpeg.exists():
            raise CameraError("Camera reported success but the JPEG file was not created")

        logger.info("Captured %s", jpeg.name)
        return jpeg

    def get_live_view_frame(self) -> bytes:
        try:
            with self._io_lock:
                result = subprocess.run(
                    ["gphoto2", "--capture-preview", "--stdout"],
                    check=True,
                    timeout=self.timeout,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                )
        except subprocess.TimeoutExpired as e:
            raise CameraError("Camera preview timed out") from e
        except subprocess.CalledProcessError as e:
            raise _error_for(e, "preview") from e

        if not result.stdout.startswith(b"\xff\xd8"):
            raise CameraError("Camera preview did not return a JPEG")
        return result.stdout
