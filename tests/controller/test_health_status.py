from controller.health import HealthStatus, HealthLevel, HealthCode, camera_busy, capture_timed_out


def test_ok_health_status():
    hs = HealthStatus.ok()
    assert hs.level == HealthLevel.OK
    assert hs.to_dict() == {"level": "OK"}


def test_error_health_status():
    hs = HealthStatus.error(
        code=HealthCode.CAPTURE_FAILED,
        message="Failed to capture image",
        instructions=["Try the capture again"],
    )

    data = hs.to_dict()
    assert data["level"] == "ERROR"
    assert data["code"] == "CAPTURE_FAILED"
    assert "Try the capture again" in data["instructions"]


def test_busy_is_a_warning_not_an_error():
    data = camera_busy().to_dict()

    assert data["level"] == "WARNING"
    assert data["code"] == "CAMERA_BUSY"


def test_timeout_is_an_error():
    assert capture_timed_out().level == HealthLevel.ERROR


def test_info_notice_carries_code():
    data = HealthStatus.info(code=HealthCode.CAMERA_ONLINE, message="back").to_dict()

    assert data["level"] == "OK"
    assert data["code"] == "CAMERA_ONLINE"
