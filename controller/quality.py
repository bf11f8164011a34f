import logging
from typing import Dict, Optional

from controller.slots import LIVE_QUALITY, LiveQuality, format_quality

logger = logging.getLogger(__name__)

QUALITY_PRESETS: Dict[str, LiveQuality] = {
    "very-low": LiveQuality(480, 360, 8),
    "low": LiveQuality(640, 480, 16),
    "medium": LiveQuality(800, 600, 24),
    "high": LiveQuality(1024, 768, 32),
}

DEFAULT_PRESET = "very-low"


def resolve_preset(name: Optional[str]) -> LiveQuality:
    return QUALITY_PRESETS.get(name or DEFAULT_PRESET, QUALITY_PRESETS[DEFAULT_PRESET])


class QualityNegotiator:
    """
    Writes the negotiated live quality only when it changes.

    Does not restart the frame loop; callers coordinate that.
    """

    def __init__(self, transport, preset: str = DEFAULT_PRESET):
        self._transport = transport
        self.preset = preset if preset in QUALITY_PRESETS else DEFAULT_PRESET
        self.applied: Optional[LiveQuality] = None

    @property
    def current(self) -> LiveQuality:
        return resolve_preset(self.preset)

    def select(self, preset: str, *, force: bool = False) -> bool:
        if preset not in QUALITY_PRESETS:
            logger.warning("Unknown quality preset %r, using %s", preset, DEFAULT_PRESET)
            preset = DEFAULT_PRESET
        self.preset = preset
        return self.apply(force=force)

    def apply(self, *, force: bool = False) -> bool:
        """Returns True when a write was issued and accepted."""
        quality = self.current
        if not force and self.applied == quality:
            return False

        if not self._transport.write(LIVE_QUALITY, format_quality(quality)):
            logger.warning("Quality update to %s failed", format_quality(quality))
            return False

        self.applied = quality
        logger.info("Quality: %dx%d q=%d", *quality.as_tuple())
        return True
