from abc import ABC, abstractmethod
from pathlib import Path


class CameraError(Exception):
    pass


class CameraBusyError(CameraError):
    """The camera (or the relay's capture desk) is already serving a capture."""


class Camera(ABC):
    """
    Hardware seam for the camera agent.

    Stills are mandatory. Live view is frame-by-frame: the agent asks for one
    preview at a time while liveEnabled is on, so start/stop are hooks for
    cameras that need to open a viewfinder first.
    """

    supports_live_view = False

    @abstractmethod
    def health_check(self) -> bool:
        """Return True if the camera is connected and usable."""
        pass

    @abstractmethod
    def capture(self, output_dir: Path) -> Path:
        """Capture one still, save it under output_dir and return the JPEG path."""
        pass

    def start_live_view(self) -> None:
        pass

    def stop_live_view(self) -> None:
        pass

    def get_live_view_frame(self) -> bytes:
        raise CameraError(f"{type(self).__name__} has no live view")
