import logging
from pathlib import Path
from typing import Optional

import psutil

from controller.slots import NOT_AVAILABLE, CameraTelemetry

logger = logging.getLogger(__name__)


class SystemTelemetry:
    """Host readings for the cameraTelemetry slot: memory, temperature, load, disk."""

    def __init__(self, disk_path: Path = Path("/")):
        self.disk_path = disk_path

    @staticmethod
    def get_memory_percent() -> float:
        return psutil.virtual_memory().percent

    @staticmethod
    def get_temperature() -> Optional[float]:
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return None
        try:
            readings = sensors()
        except (OSError, RuntimeError):
            return None
        for entries in readings.values():
            for entry in entries:
                if entry.current:
                    return entry.current
        return None

    @staticmethod
    def get_load() -> float:
        return psutil.getloadavg()[0]

    def get_disk_percent(self) -> float:
        return psutil.disk_usage(str(self.disk_path)).percent

    def sample(self) -> CameraTelemetry:
        temperature = self.get_temperature()
        return CameraTelemetry(
            memory=f"{self.get_memory_percent():.0f}%",
            temperature=NOT_AVAILABLE if temperature is None else f"{temperature:.1f}C",
            latency_or_load=f"{self.get_load():.2f}",
            signal_or_disk=f"{self.get_disk_percent():.0f}%",
        )
