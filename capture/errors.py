from __future__ import annotations

from typing import Optional


class CaptureError(Exception):
    """
    Base class for every capture failure.

    Each subclass carries a stable `code` so callers (the HTTP layer, tests)
    can branch on the failure kind without parsing messages.
    """

    code = "CAPTURE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class UnsupportedPlatform(CaptureError):
    code = "UNSUPPORTED_PLATFORM"

    def __init__(self, platform: Optional[str]):
        super().__init__(f"Unsupported platform: {platform}")
        self.platform = platform


class CameraNotFound(CaptureError):
    code = "CAMERA_NOT_FOUND"


class ExecutionFailed(CaptureError):
    code = "EXECUTION_FAILED"

    def __init__(self, exit_code: int, stderr_excerpt: str):
        message = f"Capture tool failed (rc={exit_code})"
        if stderr_excerpt:
            message = f"{message}: {stderr_excerpt}"
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["exit_code"] = self.exit_code
        data["stderr"] = self.stderr_excerpt
        return data


class OutputMissing(CaptureError):
    code = "OUTPUT_MISSING"


class DeviceBusy(CaptureError):
    code = "DEVICE_BUSY"

    def __init__(self, identifier: str):
        super().__init__(f"Camera device is busy: {identifier}")
        self.identifier = identifier


class CaptureTimeout(CaptureError):
    code = "TIMEOUT"

    def __init__(self, timeout_ms: int):
        super().__init__(f"Capture timed out after {timeout_ms} ms")
        self.timeout_ms = timeout_ms
