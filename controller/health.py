from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum, auto
from typing import List, Optional


class HealthLevel(Enum):
    OK = auto()
    WARNING = auto()
    ERROR = auto()


class HealthCode(Enum):
    CAMERA_BUSY = auto()
    CAPTURE_TIMEOUT = auto()
    CAPTURE_FAILED = auto()
    LIVE_START_FAILED = auto()
    LIVE_TAKEN_OVER = auto()
    CAMERA_ONLINE = auto()
    CAMERA_OFFLINE = auto()


@dataclass(frozen=True)
class HealthStatus:
    level: HealthLevel
    code: Optional[HealthCode] = None
    message: Optional[str] = None
    instructions: List[str] | None = None
    recoverable: bool = True
    last_updated: datetime = field(default_factory=lambda: datetime.now(UTC))

    @staticmethod
    def ok() -> "HealthStatus":
        return HealthStatus(level=HealthLevel.OK)

    @staticmethod
    def info(*, code: HealthCode, message: str) -> "HealthStatus":
        return HealthStatus(level=HealthLevel.OK, code=code, message=message)

    @staticmethod
    def warning(*, code: HealthCode, message: str, instructions: List[str] | None = None) -> "HealthStatus":
        return HealthStatus(
            level=HealthLevel.WARNING,
            code=code,
            message=message,
            instructions=instructions or [],
        )

    @staticmethod
    def error(
            *,
            code: HealthCode,
            message: str,
            instructions: List[str],
            recoverable: bool = True,
    ) -> "HealthStatus":
        return HealthStatus(
            level=HealthLevel.ERROR,
            code=code,
            message=message,
            instructions=instructions,
            recoverable=recoverable,
        )

    def to_dict(self) -> dict:
        if self.level == HealthLevel.OK and self.code is None:
            return {"level": "OK"}

        return {
            "level": self.level.name,
            "code": self.code.name if self.code else None,
            "message": self.message,
            "instructions": self.instructions,
            "recoverable": self.recoverable,
        }


def camera_busy() -> HealthStatus:
    return HealthStatus.warning(
        code=HealthCode.CAMERA_BUSY,
        message="Camera is busy. Please wait and try again.",
    )


def capture_timed_out() -> HealthStatus:
    return HealthStatus.error(
        code=HealthCode.CAPTURE_TIMEOUT,
        message="Image capture timed out. The camera may be busy or offline.",
        instructions=["Check that the camera is online", "Try the capture again"],
    )


def capture_failed(reason: str) -> HealthStatus:
    return HealthStatus.error(
        code=HealthCode.CAPTURE_FAILED,
        message=f"Failed to capture image: {reason}",
        instructions=["Check your network connection", "Try the capture again"],
    )
