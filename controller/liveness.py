"""
Liveness monitor

Online/offline is never stored. It is computed from the age of the last
telemetry write:

    online = (now - fresh_at) <= offline_threshold

where fresh_at is the local-clock moment the write was made (arrival time
minus the age the writer reports), so the two machines need not agree on time.
"""
import logging
from enum import Enum, auto
from typing import Optional

logger = logging.getLogger(__name__)


class LivenessTransition(Enum):
    WENT_ONLINE = auto()
    WENT_OFFLINE = auto()


def is_online(written_at: Optional[float], now: float, offline_threshold: float) -> bool:
    if written_at is None:
        return False
    return (now - written_at) <= offline_threshold


class LivenessMonitor:
    def __init__(self, offline_threshold: float = 7.0):
        self.offline_threshold = offline_threshold
        self._written_at: Optional[float] = None
        # Local-clock instant the last write was made; ages are measured from here.
        self._fresh_at: Optional[float] = None
        self._online: Optional[bool] = None

    @property
    def online(self) -> bool:
        return bool(self._online)

    @property
    def written_at(self) -> Optional[float]:
        return self._written_at

    def staleness(self, now: float) -> Optional[float]:
        if self._fresh_at is None:
            return None
        return now - self._fresh_at

    def observe(self, written_at: Optional[float], *, received_at: Optional[float] = None,
                age: Optional[float] = None) -> bool:
        """
        Record a telemetry timestamp. Returns True if it is a new write.

        ``written_at`` comes from the writer's clock and is only compared with
        earlier writes. When ``received_at`` (local clock) is given, staleness
        is measured from ``received_at - age`` where ``age`` is how old the
        write already was on the writer's side, so clock skew between the two
        machines never counts as telemetry age.
        """
        if written_at is None:
            return False
        if self._written_at is not None and written_at <= self._written_at:
            return False
        self._written_at = written_at
        if received_at is None:
            self._fresh_at = written_at
        else:
            self._fresh_at = received_at - max(0.0, age or 0.0)
        return True

    def evaluate(self, now: float) -> Optional[LivenessTransition]:
        online = is_online(self._fresh_at, now, self.offline_threshold)
        previous = self._online
        self._online = online

        if previous is None or previous == online:
            return None
        if online:
            logger.info("Camera online (telemetry age %.1fs)", self.staleness(now))
            return LivenessTransition.WENT_ONLINE
        logger.info("Camera offline (telemetry age %.1fs)", self.staleness(now))
        return LivenessTransition.WENT_OFFLINE
