"""
HTTP client for the relay's polling surface (see web/app.py).
"""
import logging
from typing import Optional

import requests

from controller.state_store import SlotValue
from controller.transport.base import CommandResult, TransportError

logger = logging.getLogger(__name__)

WRITTEN_AT_HEADER = "X-Written-At"
SLOT_AGE_HEADER = "X-Slot-Age"


class HttpSlotClient:
    def __init__(self, base_url: str, *, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _get(self, path: str, **kwargs):
        try:
            return self._session.get(self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"GET {path} failed: {e}") from e

    def _post(self, path: str, **kwargs):
        try:
            return self._session.post(self._url(path), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"POST {path} failed: {e}") from e

    # ---------- Slots ----------

    def read(self, slot: str, default: str = "") -> SlotValue:
        response = self._get(f"/slots/{slot}")
        if response.status_code == 204:
            return SlotValue(default, None)
        if response.status_code != 200:
            raise TransportError(f"Slot read {slot} returned HTTP {response.status_code}")
        header = response.headers.get(WRITTEN_AT_HEADER)
        written_at = float(header) if header else None
        age_header = response.headers.get(SLOT_AGE_HEADER)
        age = float(age_header) if age_header else None
        return SlotValue(response.text.strip() or default, written_at, age)

    def write(self, slot: str, value: str) -> bool:
        response = self._post("/write", data={"slot": slot, "data": value})
        if response.status_code == 200 and response.text.strip() == "OK":
            return True
        logger.warning("Slot write %s rejected: HTTP %s %s", slot, response.status_code, response.text.strip())
        return False

    # ---------- Capture ----------

    def request_capture(self) -> CommandResult:
        response = self._post("/capture")
        if response.status_code == 409:
            return CommandResult.busy()
        if response.status_code != 200:
            return CommandResult.failed(f"HTTP {response.status_code}")
        data = response.json()
        return CommandResult.accepted(data.get("id"), data.get("requested_at"))

    def latest_result_at(self) -> Optional[float]:
        response = self._get("/check-new-image")
        if response.status_code != 200:
            raise TransportError(f"check-new-image returned HTTP {response.status_code}")
        value = float(response.text.strip() or 0)
        return value or None

    def update_settings(self, settings: dict) -> bool:
        response = self._post("/settings", json=settings)
        return response.status_code == 200

    # ---------- Frames ----------

    def fetch_frame(self) -> Optional[bytes]:
        response = self._get("/live-view")
        if response.status_code == 204:
            return None
        if response.status_code != 200:
            raise TransportError(f"live-view returned HTTP {response.status_code}")
        return response.content

    def close(self) -> None:
        self._session.close()
