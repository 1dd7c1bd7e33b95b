"""
Capture orchestrator

Single entry point for camera work: photo, fixed-duration video and live
stream.

Flow per request:
- resolve the active camera (fresh every time, never cached)
- build the argv for the platform's capture tool
- run it while holding the device lock
- photo/video: validate the file, removing partial output on any failure
- stream: hand the live process to the StreamRelay until stopped
"""
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from capture.device_lock import DEVICE_LOCKS, DeviceLockRegistry
from capture.drivers import CameraDeviceDriver, driver_for
from capture.errors import CameraNotFound, CaptureError, UnsupportedPlatform
from capture.executor import ProcessExecutor
from capture.health import HealthCode, HealthStatus
from capture.models import (
    CaptureKind,
    CaptureRequest,
    CaptureResult,
    DeviceDescriptor,
    Platform,
)
from capture.settings import CaptureSettings
from capture.stream_relay import StreamHandle, StreamRelay
from capture.validator import discard_partial, validate

logger = logging.getLogger(__name__)

FILE_PATTERNS = {
    CaptureKind.PHOTO: "photo_{timestamp}.jpg",
    CaptureKind.VIDEO: "video_{timestamp}.mp4",
}


class CaptureOrchestrator:
    def __init__(
            self,
            settings: Optional[CaptureSettings] = None,
            executor: Optional[ProcessExecutor] = None,
            locks: Optional[DeviceLockRegistry] = None,
            platform: Optional[Platform] = None,
    ):
        self.settings = settings or CaptureSettings()
        self.executor = executor or ProcessExecutor(
            chunk_size=self.settings.stream_chunk_size,
            stop_timeout=self.settings.stream_stop_timeout_seconds,
        )
        self.locks = locks or DEVICE_LOCKS
        self.platform = platform or Platform.current()
        self.relay = StreamRelay(self.executor, self.locks, self.settings.stderr_excerpt_chars)

    # ---------- Public API ----------

    def capture(
            self,
            kind: CaptureKind,
            timeout_ms: Optional[int] = None,
            fixed_duration_ms: Optional[int] = None,
    ) -> CaptureResult:
        """Take a photo or a fixed-duration video into the save directory."""
        return self.run_capture(self.new_request(kind, timeout_ms, fixed_duration_ms))

    def new_request(
            self,
            kind: CaptureKind,
            timeout_ms: Optional[int] = None,
            fixed_duration_ms: Optional[int] = None,
    ) -> CaptureRequest:
        if kind not in FILE_PATTERNS:
            raise ValueError(f"{kind.name} is not a finite capture")

        timestamp = time.time_ns() // 1_000_000
        filename = FILE_PATTERNS[kind].format(timestamp=timestamp)
        return CaptureRequest(
            kind=kind,
            target_path=self.settings.save_dir / filename,
            timeout_ms=timeout_ms,
            fixed_duration_ms=(
                self.settings.video_duration_ms if fixed_duration_ms is None else fixed_duration_ms
            ),
        )

    def run_capture(self, request: CaptureRequest) -> CaptureResult:
        if request.kind is CaptureKind.STREAM:
            raise ValueError("Use start_stream() for live capture")

        driver = self.driver()
        device = driver.resolve()
        argv = driver.build_command(device, request)
        timeout_ms = self._timeout_for(request)
        path = Path(request.target_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with self.locks.hold(device.identifier):
            started_at = time.monotonic()
            try:
                self.executor.run_to_completion(argv, timeout_ms).check(
                    self.settings.stderr_excerpt_chars
                )
            except CaptureError as e:
                logger.warning(f"{request.kind.name} capture from {device.identifier} failed: {e}")
                discard_partial(path)
                raise

            result = validate(path, started_at)

        logger.info(
            f"{request.kind.name} saved to {result.path} "
            f"({result.size_bytes} bytes, {result.duration_ms} ms)"
        )
        return result

    def start_stream(self) -> StreamHandle:
        driver = self.driver()
        device = driver.resolve()
        request = CaptureRequest(kind=CaptureKind.STREAM, target_path=Path("pipe:1"))
        argv = driver.build_command(device, request)
        return self.relay.start(device, argv)

    def stop_streams(self) -> int:
        return self.relay.stop_all()

    def list_devices(self) -> List[DeviceDescriptor]:
        return self.driver().list_devices()

    def health(self) -> HealthStatus:
        try:
            driver = self.driver()
        except UnsupportedPlatform as e:
            return HealthStatus.error(
                code=HealthCode.UNSUPPORTED_PLATFORM,
                message=e.message,
                instructions=["Run the service on macOS, Windows or Linux"],
            )

        missing = driver.missing_programs()
        if missing:
            return HealthStatus.error(
                code=HealthCode.CAPTURE_TOOL_MISSING,
                message=f"Capture tools not found in PATH: {', '.join(missing)}",
                instructions=[f"Install {program}" for program in missing],
            )

        try:
            device = driver.resolve()
        except CameraNotFound as e:
            return HealthStatus.error(
                code=HealthCode.CAMERA_NOT_FOUND,
                message=e.message,
                instructions=[
                    "Check that the camera is plugged in",
                    "Check the USB cable",
                    "On Windows, set CAMERA_WINDOWS_DEVICE_NAME to the camera's name",
                ],
            )

        return HealthStatus.ok(device=device.identifier)

    # ---------- Helpers ----------

    def driver(self) -> CameraDeviceDriver:
        if self.platform is None:
            raise UnsupportedPlatform(sys.platform)
        return driver_for(self.platform, self.settings, self.executor)

    def _timeout_for(self, request: CaptureRequest) -> int:
        if request.timeout_ms is not None:
            return request.timeout_ms
        if request.kind is CaptureKind.VIDEO:
            return request.fixed_duration_ms + self.settings.video_timeout_grace_ms
        return self.settings.photo_timeout_ms
