"""
Slot schemas

Every shared slot has one parse function and one format function. Parsers
are lenient where a default exists and raise SlotFormatError where the
relay must reject the write.
"""
import re
from dataclasses import dataclass
from typing import Optional, Tuple

LIVE_ENABLED = "liveEnabled"
LIVE_QUALITY = "liveQuality"
LIVE_SESSION = "liveSession"
CAMERA_TELEMETRY = "cameraTelemetry"
CAPTURE_TRIGGER = "captureTrigger"
CAMERA_SETTINGS = "cameraSettings"

# Blobs
LIVE_FRAME = "live.jpg"
CAPTURE_IMAGE = "pic.jpg"

# Slots a client may write through the relay
CLIENT_WRITABLE = (LIVE_ENABLED, LIVE_QUALITY, LIVE_SESSION, CAMERA_SETTINGS)
READABLE = (LIVE_ENABLED, LIVE_QUALITY, LIVE_SESSION, CAMERA_TELEMETRY, CAMERA_SETTINGS)

NOT_AVAILABLE = "N/A"


class SlotFormatError(ValueError):
    pass


# ---------- liveEnabled / captureTrigger ----------

def parse_switch(raw: str) -> bool:
    return raw.strip().lower() == "on"


def format_switch(enabled: bool) -> str:
    return "on" if enabled else "off"


def validate_switch(raw: str) -> str:
    value = raw.strip().lower()
    if value not in ("on", "off"):
        raise SlotFormatError(f"Expected on/off, got {raw!r}")
    return value


# ---------- liveQuality ----------

@dataclass(frozen=True)
class LiveQuality:
    width: int
    height: int
    quality_level: int

    WIDTH_RANGE = (320, 2048)
    HEIGHT_RANGE = (240, 1536)
    LEVEL_RANGE = (1, 100)

    def as_tuple(self) -> Tuple[int, int, int]:
        return self.width, self.height, self.quality_level


def parse_quality(raw: str) -> LiveQuality:
    parts = raw.split()
    if len(parts) != 3:
        raise SlotFormatError('Invalid format: expected "width height quality"')
    try:
        width, height, level = (int(p) for p in parts)
    except ValueError as e:
        raise SlotFormatError(f"Invalid quality values: {raw!r}") from e

    lo_w, hi_w = LiveQuality.WIDTH_RANGE
    lo_h, hi_h = LiveQuality.HEIGHT_RANGE
    lo_q, hi_q = LiveQuality.LEVEL_RANGE
    if not (lo_w <= width <= hi_w and lo_h <= height <= hi_h and lo_q <= level <= hi_q):
        raise SlotFormatError(f"Invalid quality values: w={width} h={height} q={level}")
    return LiveQuality(width, height, level)


def format_quality(quality: LiveQuality) -> str:
    return f"{quality.width} {quality.height} {quality.quality_level}"


# ---------- liveSession ----------

_SESSION_RE = re.compile(r"^(\d+):([A-Za-z0-9_]+)$")


@dataclass(frozen=True)
class SessionStamp:
    timestamp_ms: int
    session_id: str


def parse_session(raw: str) -> Optional[SessionStamp]:
    """Return None for an empty or malformed slot."""
    match = _SESSION_RE.match(raw.strip())
    if not match:
        return None
    return SessionStamp(int(match.group(1)), match.group(2))


def format_session(stamp: SessionStamp) -> str:
    return f"{stamp.timestamp_ms}:{stamp.session_id}"


def validate_session(raw: str) -> str:
    value = raw.strip()
    if value and parse_session(value) is None:
        raise SlotFormatError("Invalid session format")
    return value


# ---------- cameraTelemetry ----------

@dataclass(frozen=True)
class CameraTelemetry:
    memory: str = NOT_AVAILABLE
    temperature: str = NOT_AVAILABLE
    latency_or_load: str = NOT_AVAILABLE
    signal_or_disk: str = NOT_AVAILABLE
    written_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "memory": self.memory,
            "temperature": self.temperature,
            "latency_or_load": self.latency_or_load,
            "signal_or_disk": self.signal_or_disk,
            "written_at": self.written_at,
        }


def parse_telemetry(raw: str, written_at: Optional[float] = None) -> CameraTelemetry:
    parts = [p.strip() or NOT_AVAILABLE for p in raw.split(",")] if raw.strip() else []
    parts = (parts + [NOT_AVAILABLE] * 4)[:4]
    return CameraTelemetry(*parts, written_at=written_at)


def format_telemetry(telemetry: CameraTelemetry) -> str:
    return ",".join(
        (telemetry.memory, telemetry.temperature, telemetry.latency_or_load, telemetry.signal_or_disk)
    )


# ---------- cameraSettings ----------

DEFAULT_CAMERA_SETTINGS = "3 5 33333 -35 0 none 100"

SETTINGS_FIELDS = ("resolution", "compression", "iso", "saturation", "rotation", "effect", "sharpness")
SETTINGS_RANGES = {
    "resolution": (1, 4),
    "compression": (5, 25),
    "iso": (0, 33333),
    "saturation": (-100, 100),
    "rotation": (0, 270),
    "sharpness": (25, 100),
}
ALLOWED_EFFECTS = ("none", "negative")


def parse_settings(raw: str) -> dict:
    parts = raw.split()
    if len(parts) != len(SETTINGS_FIELDS):
        raise SlotFormatError(f"Expected {len(SETTINGS_FIELDS)} settings, got {len(parts)}")
    settings = dict(zip(SETTINGS_FIELDS, parts))
    return validate_settings(settings)


def validate_settings(settings: dict) -> dict:
    defaults = dict(zip(SETTINGS_FIELDS, DEFAULT_CAMERA_SETTINGS.split()))
    clean = {}
    for field in SETTINGS_FIELDS:
        value = settings.get(field, defaults[field])
        if field == "effect":
            if value not in ALLOWED_EFFECTS:
                raise SlotFormatError(f"Unknown effect: {value!r}")
            clean[field] = value
            continue
        try:
            number = int(value)
        except (TypeError, ValueError) as e:
            raise SlotFormatError(f"Invalid {field}: {value!r}") from e
        low, high = SETTINGS_RANGES[field]
        if not low <= number <= high:
            raise SlotFormatError(f"{field} out of range: {number}")
        clean[field] = number
    return clean


def format_settings(settings: dict) -> str:
    return " ".join(str(settings[field]) for field in SETTINGS_FIELDS)


def validate_slot_write(slot: str, raw: str) -> str:
    """Normalize a client write or raise SlotFormatError."""
    if slot == LIVE_ENABLED:
        return validate_switch(raw)
    if slot == LIVE_QUALITY:
        return format_quality(parse_quality(raw))
    if slot == LIVE_SESSION:
        return validate_session(raw)
    if slot == CAMERA_SETTINGS:
        return format_settings(parse_settings(raw))
    raise SlotFormatError(f"Slot not writable: {slot}")
