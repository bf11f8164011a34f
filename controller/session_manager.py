"""
Session manager

Mutual exclusion for live viewing without a lock service. Each client that
turns live view on mints a session id and heartbeats "<ms>:<id>" into the
single liveSession slot. Whoever reads a different, fresh id concedes. This
is last-writer-wins with a grace window: two clients starting together flap
once and converge.
"""
import logging
import random
import string
from enum import Enum, auto
from typing import Callable, Optional

from controller.slots import LIVE_SESSION, SessionStamp, format_session, parse_session

logger = logging.getLogger(__name__)

_ALPHABET = string.ascii_lowercase + string.digits


class SessionVerdict(Enum):
    OWNED = auto()
    CONCEDE = auto()
    ABANDONED = auto()
    VACANT = auto()
    INACTIVE = auto()


def mint_session_id(now_ms: int, rng: random.Random = random) -> str:
    suffix = "".join(rng.choice(_ALPHABET) for _ in range(9))
    return f"{now_ms}_{suffix}"


class SessionManager:
    def __init__(self, transport, clock: Callable[[], float], *, grace: float = 30.0, rng=random):
        self._transport = transport
        self._clock = clock
        self.grace = grace
        self._rng = rng

        self.session_id: Optional[str] = None
        self.started_at: Optional[float] = None
        self.last_heartbeat_at: Optional[float] = None

    @property
    def active(self) -> bool:
        return self.session_id is not None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def start(self) -> str:
        now = self._clock()
        self.session_id = mint_session_id(int(now * 1000), self._rng)
        self.started_at = now
        self.last_heartbeat_at = None
        logger.info("Live session %s started", self.session_id)
        self.heartbeat()
        return self.session_id

    def stop(self) -> None:
        if self.session_id is not None:
            logger.info("Live session %s ended", self.session_id)
        self.session_id = None
        self.started_at = None
        self.last_heartbeat_at = None

    def heartbeat(self) -> bool:
        if self.session_id is None:
            return False
        stamp = SessionStamp(self._now_ms(), self.session_id)
        ok = self._transport.write(LIVE_SESSION, format_session(stamp))
        if ok:
            self.last_heartbeat_at = stamp.timestamp_ms / 1000
        else:
            logger.warning("Session heartbeat write failed for %s", self.session_id)
        return ok

    def check(self) -> SessionVerdict:
        """Compare the shared slot with our own session."""
        if self.session_id is None:
            return SessionVerdict.INACTIVE

        stamp = parse_session(self._transport.read(LIVE_SESSION, "").value)
        if stamp is None:
            return SessionVerdict.VACANT
        if stamp.session_id == self.session_id:
            return SessionVerdict.OWNED

        age = (self._now_ms() - stamp.timestamp_ms) / 1000
        if age < self.grace:
            logger.info(
                "Live stream opened elsewhere (%s, %.1fs ago), conceding %s",
                stamp.session_id, age, self.session_id,
            )
            return SessionVerdict.CONCEDE
        return SessionVerdict.ABANDONED
