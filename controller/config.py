"""Configuration surfaces loaded from environment variables."""
import os
from dataclasses import dataclass
from pathlib import Path


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass(frozen=True)
class ClientConfig:
    """Every timing constant the client core uses. Seconds unless noted."""
    relay_url: str = "http://127.0.0.1:5000"
    event_url: str | None = None

    status_interval: float = 2.0
    live_refresh_interval: float = 1.5
    hidden_refresh_factor: int = 3
    heartbeat_interval: float = 10.0
    session_grace: float = 30.0
    offline_threshold: float = 7.0
    live_error_threshold: int = 7

    capture_fast_interval: float = 0.025
    capture_fast_attempts: int = 40
    capture_slow_interval: float = 0.2
    polling_capture_timeout: float = 15.0
    event_capture_timeout: float = 15.0
    settle_delay: float = 0.5
    live_start_delay: float = 0.8

    failure_threshold: int = 3
    fallback_cooldown: float = 60.0
    reconnect_delay: float = 2.0
    reconnect_backoff: float = 1.5
    max_reconnect_delay: float = 30.0

    request_timeout: float = 5.0
    default_quality: str = "very-low"


@dataclass(frozen=True)
class RelayConfig:
    state_dir: Path = Path("state")
    host: str = "0.0.0.0"
    port: int = 5000
    capture_timeout: float = 15.0
    offline_threshold: float = 7.0
    watch_interval: float = 0.1


@dataclass(frozen=True)
class AgentConfig:
    state_dir: Path = Path("state")
    telemetry_interval: float = 2.0
    live_frame_interval: float = 0.1
    loop_interval: float = 0.05
    capture_timeout: int = 10


def load_client_config() -> ClientConfig:
    relay_url = os.getenv("CAMRELAY_URL", ClientConfig.relay_url)
    return ClientConfig(
        relay_url=relay_url,
        event_url=os.getenv("CAMRELAY_EVENT_URL") or relay_url,
        status_interval=_env_float("CAMRELAY_STATUS_INTERVAL", ClientConfig.status_interval),
        live_refresh_interval=_env_float("CAMRELAY_LIVE_INTERVAL", ClientConfig.live_refresh_interval),
        heartbeat_interval=_env_float("CAMRELAY_HEARTBEAT_INTERVAL", ClientConfig.heartbeat_interval),
        offline_threshold=_env_float("CAMRELAY_OFFLINE_THRESHOLD", ClientConfig.offline_threshold),
        live_error_threshold=_env_int("CAMRELAY_LIVE_ERROR_THRESHOLD", ClientConfig.live_error_threshold),
        polling_capture_timeout=_env_float("CAMRELAY_CAPTURE_TIMEOUT", ClientConfig.polling_capture_timeout),
        event_capture_timeout=_env_float("CAMRELAY_CAPTURE_TIMEOUT", ClientConfig.event_capture_timeout),
        failure_threshold=_env_int("CAMRELAY_MAX_FAILURES", ClientConfig.failure_threshold),
        fallback_cooldown=_env_float("CAMRELAY_RETRY_AFTER", ClientConfig.fallback_cooldown),
        default_quality=os.getenv("CAMRELAY_QUALITY", ClientConfig.default_quality),
    )


def load_relay_config() -> RelayConfig:
    return RelayConfig(
        state_dir=Path(os.getenv("CAMRELAY_STATE_DIR", str(RelayConfig.state_dir))),
        host=os.getenv("CAMRELAY_HOST", RelayConfig.host),
        port=_env_int("CAMRELAY_PORT", RelayConfig.port),
        capture_timeout=_env_float("CAMRELAY_CAPTURE_TIMEOUT", RelayConfig.capture_timeout),
        offline_threshold=_env_float("CAMRELAY_OFFLINE_THRESHOLD", RelayConfig.offline_threshold),
    )


def load_agent_config() -> AgentConfig:
    return AgentConfig(
        state_dir=Path(os.getenv("CAMRELAY_STATE_DIR", str(AgentConfig.state_dir))),
        telemetry_interval=_env_float("CAMRELAY_TELEMETRY_INTERVAL", AgentConfig.telemetry_interval),
        capture_timeout=_env_int("CAMRELAY_GPHOTO_TIMEOUT", AgentConfig.capture_timeout),
    )
