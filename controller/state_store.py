"""
Shared state store

Timestamped flat key/value slots on disk, one file per key.

- Writers replace a slot with a complete new value (temp file + os.replace),
  so readers never observe a partial write.
- Readers get the caller's default when a slot is missing or unreadable.
  Absence is the normal startup state, not an error.
- A slot's freshness is the file modification time.
"""
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

MAX_SLOT_SIZE = 1024 * 1024
MAX_BLOB_SIZE = 80_000_000

_KEY_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


@dataclass(frozen=True)
class SlotValue:
    value: str
    written_at: Optional[float] = None
    # Age on the writer's clock when read remotely; None for local reads.
    age: Optional[float] = None


class SharedStateStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid slot key: {key!r}")
        return self.root / key

    # ---------- Writes ----------

    def write(self, key: str, value: str) -> bool:
        return self.write_bytes(key, value.encode("utf-8"))

    def write_bytes(self, key: str, data: bytes) -> bool:
        """Atomically replace `key`. Returns False (and logs) on failure."""
        tmp_name = None
        try:
            path = self.path_for(key)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".tmp", dir=self.root)
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            return True
        except ValueError as e:
            logger.error("Slot write refused: %s", e)
            return False
        except OSError as e:
            logger.error("Slot write failed for %s: %s", key, e)
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
            return False

    # ---------- Reads ----------

    def read(self, key: str, default: str = "") -> str:
        return self.read_stamped(key, default).value

    def read_stamped(self, key: str, default: str = "") -> SlotValue:
        data = self._read_raw(key, MAX_SLOT_SIZE)
        if data is None:
            return SlotValue(default, None)
        try:
            text = data[0].decode("utf-8").strip()
        except UnicodeDecodeError:
            logger.warning("Slot %s is not valid text", key)
            return SlotValue(default, None)
        if not text:
            return SlotValue(default, data[1])
        return SlotValue(text, data[1])

    def read_bytes(self, key: str) -> Optional[bytes]:
        data = self._read_raw(key, MAX_BLOB_SIZE)
        return data[0] if data is not None else None

    def modified_at(self, key: str) -> Optional[float]:
        try:
            return self.path_for(key).stat().st_mtime
        except (OSError, ValueError):
            return None

    def _read_raw(self, key: str, limit: int):
        try:
            path = self.path_for(key)
        except ValueError as e:
            logger.warning("Slot read refused: %s", e)
            return None
        try:
            stat = path.stat()
            if stat.st_size > limit:
                logger.warning("Slot %s exceeds %d bytes, ignoring", key, limit)
                return None
            return path.read_bytes(), stat.st_mtime
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Slot read failed for %s: %s", key, e)
            return None
