import re
import threading

import pytest

from capture.device_lock import DeviceLockRegistry
from capture.errors import (
    CameraNotFound,
    CaptureTimeout,
    DeviceBusy,
    ExecutionFailed,
    OutputMissing,
    UnsupportedPlatform,
)
from capture.health import HealthCode, HealthLevel
from capture.models import CaptureKind, CaptureRequest, Platform
from capture.orchestrator import CaptureOrchestrator
from capture.settings import CaptureSettings
from capture.stream_relay import StreamState
from tests.fakes.fake_executor import FakeExecutor


@pytest.fixture
def save_dir(tmp_path):
    # Not created up front: the orchestrator creates it on first use.
    return tmp_path / "photos"


def make_orchestrator(save_dir, executor=None, platform=Platform.LINUX, **overrides):
    settings = CaptureSettings(save_dir=save_dir, **overrides)
    return CaptureOrchestrator(
        settings=settings,
        executor=executor or FakeExecutor(),
        locks=DeviceLockRegistry(),
        platform=platform,
    )


def test_photo_success(save_dir):
    orchestrator = make_orchestrator(save_dir)

    result = orchestrator.capture(CaptureKind.PHOTO)

    assert result.path.exists()
    assert result.size_bytes > 0
    assert result.duration_ms >= 0
    assert re.fullmatch(r"photo_\d{13}\.jpg", result.path.name)
    assert result.path.parent == save_dir


def test_photo_uses_resolved_device_and_default_timeout(save_dir):
    executor = FakeExecutor()
    orchestrator = make_orchestrator(save_dir, executor, photo_timeout_ms=7_000)

    orchestrator.capture(CaptureKind.PHOTO)

    argv, timeout_ms = executor.calls[-1]
    assert argv[argv.index("-i") + 1] == "/dev/video0"
    assert timeout_ms == 7_000


def test_photo_custom_timeout(save_dir):
    executor = FakeExecutor()
    orchestrator = make_orchestrator(save_dir, executor)

    orchestrator.capture(CaptureKind.PHOTO, timeout_ms=1_500)

    assert executor.calls[-1][1] == 1_500


def test_photo_non_zero_exit_leaves_no_file(save_dir):
    executor = FakeExecutor(output=b"half a frame", exit_code=1, stderr=b"Device or resource busy")
    orchestrator = make_orchestrator(save_dir, executor)

    with pytest.raises(ExecutionFailed, match="resource busy") as excinfo:
        orchestrator.capture(CaptureKind.PHOTO)

    assert excinfo.value.exit_code == 1
    assert list(save_dir.iterdir()) == []


def test_video_zero_exit_without_output_is_output_missing(save_dir):
    orchestrator = make_orchestrator(save_dir, FakeExecutor(output=None))

    with pytest.raises(OutputMissing):
        orchestrator.capture(CaptureKind.VIDEO)

    assert list(save_dir.iterdir()) == []


def test_video_success_uses_fixed_duration(save_dir):
    executor = FakeExecutor(output=b"\x00\x00\x00\x18ftypmp42")
    orchestrator = make_orchestrator(save_dir, executor, video_timeout_grace_ms=5_000)

    result = orchestrator.capture(CaptureKind.VIDEO)

    argv, timeout_ms = executor.calls[-1]
    assert re.fullmatch(r"video_\d{13}\.mp4", result.path.name)
    assert argv[argv.index("-t") + 1] == "10"
    assert timeout_ms == 15_000


def test_video_duration_must_be_positive(save_dir):
    orchestrator = make_orchestrator(save_dir)

    with pytest.raises(ValueError):
        orchestrator.capture(CaptureKind.VIDEO, fixed_duration_ms=0)


def test_timeout_leaves_no_file(save_dir):
    executor = FakeExecutor(output=b"partial", error=CaptureTimeout(100))
    orchestrator = make_orchestrator(save_dir, executor)

    with pytest.raises(CaptureTimeout):
        orchestrator.capture(CaptureKind.PHOTO, timeout_ms=100)

    assert list(save_dir.iterdir()) == []


def test_lock_released_after_failure(save_dir):
    executor = FakeExecutor(exit_code=1)
    orchestrator = make_orchestrator(save_dir, executor)

    with pytest.raises(ExecutionFailed):
        orchestrator.capture(CaptureKind.PHOTO)

    assert not orchestrator.locks.is_held("/dev/video0")


def test_no_camera(save_dir):
    orchestrator = make_orchestrator(save_dir, FakeExecutor(listing=b""))

    with pytest.raises(CameraNotFound):
        orchestrator.capture(CaptureKind.PHOTO)


def test_unsupported_platform(save_dir, monkeypatch):
    monkeypatch.setattr(Platform, "current", staticmethod(lambda sys_platform=None: None))
    orchestrator = make_orchestrator(save_dir, platform=None)

    with pytest.raises(UnsupportedPlatform):
        orchestrator.capture(CaptureKind.PHOTO)


def test_stream_request_rejected_for_finite_capture(save_dir):
    orchestrator = make_orchestrator(save_dir)

    with pytest.raises(ValueError):
        orchestrator.capture(CaptureKind.STREAM)
    with pytest.raises(ValueError):
        orchestrator.run_capture(CaptureRequest(CaptureKind.STREAM, save_dir / "x"))


def test_concurrent_streams_same_device(save_dir):
    executor = FakeExecutor()
    orchestrator = make_orchestrator(save_dir, executor)

    first = orchestrator.start_stream()
    with pytest.raises(DeviceBusy):
        orchestrator.start_stream()

    assert len(executor.stream_calls) == 1
    assert first.state == StreamState.STREAMING
    executor.streams[0].feed(b"\x47ts packet")
    assert next(first.read_chunks()) == b"\x47ts packet"


def test_photo_while_streaming_is_busy(save_dir):
    executor = FakeExecutor()
    orchestrator = make_orchestrator(save_dir, executor)
    orchestrator.start_stream()

    with pytest.raises(DeviceBusy):
        orchestrator.capture(CaptureKind.PHOTO)

    assert executor.capture_calls == []


def test_stop_stream_then_photo_succeeds(save_dir):
    executor = FakeExecutor()
    orchestrator = make_orchestrator(save_dir, executor)
    handle = orchestrator.start_stream()

    handle.stop()
    result = orchestrator.capture(CaptureKind.PHOTO)

    assert executor.streams[0].killed
    assert result.path.exists()


def test_stream_command_targets_stdout(save_dir):
    executor = FakeExecutor()
    orchestrator = make_orchestrator(save_dir, executor)

    orchestrator.start_stream()

    assert executor.stream_calls[0][-1] == "pipe:1"
    assert "mpegts" in executor.stream_calls[0]


def test_stop_streams(save_dir):
    executor = FakeExecutor()
    orchestrator = make_orchestrator(save_dir, executor)
    orchestrator.start_stream()

    assert orchestrator.stop_streams() == 1
    assert orchestrator.stop_streams() == 0


def test_captures_on_different_devices_do_not_block(save_dir):
    locks = DeviceLockRegistry()
    settings = CaptureSettings(save_dir=save_dir)
    mac = CaptureOrchestrator(settings, FakeExecutor(listing=b"=> USB Camera\n"), locks, Platform.MACOS)
    linux = CaptureOrchestrator(settings, FakeExecutor(), locks, Platform.LINUX)

    mac.start_stream()
    result = linux.capture(CaptureKind.PHOTO)

    assert result.size_bytes > 0


def test_parallel_photos_same_device_one_busy(save_dir):
    release = threading.Event()
    started = threading.Event()
    executor = FakeExecutor()
    original = executor.run_to_completion

    def slow(argv, timeout_ms):
        if argv[-1] != "--list-devices":
            started.set()
            release.wait(5)
        return original(argv, timeout_ms)

    executor.run_to_completion = slow
    orchestrator = make_orchestrator(save_dir, executor)
    results = []

    worker = threading.Thread(target=lambda: results.append(orchestrator.capture(CaptureKind.PHOTO)))
    worker.start()
    started.wait(5)

    with pytest.raises(DeviceBusy):
        orchestrator.capture(CaptureKind.PHOTO)

    release.set()
    worker.join(5)
    assert len(results) == 1


def test_list_devices(save_dir):
    orchestrator = make_orchestrator(save_dir)

    assert [d.identifier for d in orchestrator.list_devices()] == ["/dev/video0", "/dev/video10"]


def test_health_ok(save_dir, monkeypatch):
    monkeypatch.setattr("shutil.which", lambda p: f"/usr/bin/{p}")
    orchestrator = make_orchestrator(save_dir)

    health = orchestrator.health()

    assert health.level == HealthLevel.OK
    assert health.to_dict() == {"level": "OK", "device": "/dev/video0"}


def test_health_tool_missing(save_dir, monkeypatch):
    monkeypatch.setattr("shutil.which", lambda p: None)
    orchestrator = make_orchestrator(save_dir)

    health = orchestrator.health()

    assert health.level == HealthLevel.ERROR
    assert health.code == HealthCode.CAPTURE_TOOL_MISSING
    assert "ffmpeg" in health.message


def test_health_camera_not_found(save_dir, monkeypatch):
    monkeypatch.setattr("shutil.which", lambda p: f"/usr/bin/{p}")
    orchestrator = make_orchestrator(save_dir, FakeExecutor(listing=b""))

    assert orchestrator.health().code == HealthCode.CAMERA_NOT_FOUND


def test_health_unsupported_platform(save_dir, monkeypatch):
    monkeypatch.setattr(Platform, "current", staticmethod(lambda sys_platform=None: None))
    orchestrator = make_orchestrator(save_dir, platform=None)

    assert orchestrator.health().code == HealthCode.UNSUPPORTED_PLATFORM
