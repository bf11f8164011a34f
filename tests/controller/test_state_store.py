import os

import pytest

from controller.state_store import SharedStateStore, SlotValue


def test_read_missing_slot_returns_default(tmp_path):
    store = SharedStateStore(tmp_path)

    assert store.read("liveEnabled", "off") == "off"
    assert store.read_stamped("liveEnabled", "off") == SlotValue("off", None)
    assert store.modified_at("liveEnabled") is None


def test_write_replaces_whole_value(tmp_path):
    store = SharedStateStore(tmp_path)

    assert store.write("liveQuality", "640 480 16")
    assert store.write("liveQuality", "480 360 8")

    assert store.read("liveQuality") == "480 360 8"


def test_write_leaves_no_temp_files(tmp_path):
    store = SharedStateStore(tmp_path)

    store.write("liveSession", "1:abc")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["liveSession"]


def test_read_stamped_reports_modification_time(tmp_path):
    store = SharedStateStore(tmp_path)
    store.write("cameraTelemetry", "40%,50C,0.1,20%")
    os.utime(tmp_path / "cameraTelemetry", (1000.0, 1000.0))

    stamped = store.read_stamped("cameraTelemetry")

    assert stamped.value == "40%,50C,0.1,20%"
    assert stamped.written_at == 1000.0
    assert store.modified_at("cameraTelemetry") == 1000.0


def test_empty_slot_reads_default_but_keeps_timestamp(tmp_path):
    store = SharedStateStore(tmp_path)
    (tmp_path / "liveSession").write_text("  \n")

    stamped = store.read_stamped("liveSession", "none")

    assert stamped.value == "none"
    assert stamped.written_at is not None


def test_undecodable_slot_reads_default(tmp_path):
    store = SharedStateStore(tmp_path)
    (tmp_path / "liveEnabled").write_bytes(b"\xff\xfe\xfa")

    assert store.read("liveEnabled", "off") == "off"


def test_write_failure_returns_false(tmp_path, monkeypatch):
    store = SharedStateStore(tmp_path)

    def no_space(*args, **kwargs):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("tempfile.mkstemp", no_space)

    assert store.write("liveEnabled", "on") is False
    assert store.read("liveEnabled", "off") == "off"


def test_blob_round_trip(tmp_path):
    store = SharedStateStore(tmp_path)

    assert store.write_bytes("pic.jpg", b"\xff\xd8data")

    assert store.read_bytes("pic.jpg") == b"\xff\xd8data"
    assert store.read_bytes("live.jpg") is None


def test_rejects_path_like_keys(tmp_path):
    store = SharedStateStore(tmp_path)

    with pytest.raises(ValueError):
        store.path_for("../etc/passwd")


def test_malformed_key_fails_soft(tmp_path):
    store = SharedStateStore(tmp_path / "state")

    assert store.write("../escape", "on") is False
    assert store.write_bytes("a/b", b"x") is False
    assert store.read("../escape", "off") == "off"
    assert store.read_stamped("", "off") == SlotValue("off", None)
    assert store.read_bytes("../escape") is None
    assert store.modified_at("../escape") is None
    assert not (tmp_path / "escape").exists()
