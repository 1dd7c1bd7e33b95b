import sys
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Optional

DEFAULT_VIDEO_DURATION_MS = 10_000


class Platform(Enum):
    MACOS = auto()
    WINDOWS = auto()
    LINUX = auto()

    @staticmethod
    def current(sys_platform: Optional[str] = None) -> Optional["Platform"]:
        """Map `sys.platform` to a supported platform, or None."""
        name = sys_platform if sys_platform is not None else sys.platform
        if name == "darwin":
            return Platform.MACOS
        if name == "win32":
            return Platform.WINDOWS
        if name.startswith("linux"):
            return Platform.LINUX
        return None


class CaptureKind(Enum):
    PHOTO = auto()
    VIDEO = auto()
    STREAM = auto()


@dataclass(frozen=True)
class DeviceDescriptor:
    platform: Platform
    identifier: str

    def __post_init__(self):
        if not self.identifier or not self.identifier.strip():
            raise ValueError("Device identifier must not be empty")

    def to_dict(self) -> dict:
        return {"platform": self.platform.name, "identifier": self.identifier}


@dataclass(frozen=True)
class CaptureRequest:
    kind: CaptureKind
    target_path: Path
    timeout_ms: Optional[int] = None
    fixed_duration_ms: int = DEFAULT_VIDEO_DURATION_MS

    def __post_init__(self):
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be > 0 (got {self.timeout_ms})")
        if self.fixed_duration_ms <= 0:
            raise ValueError(f"fixed_duration_ms must be > 0 (got {self.fixed_duration_ms})")


@dataclass(frozen=True)
class CaptureResult:
    path: Path
    size_bytes: int
    duration_ms: int

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "size_bytes": self.size_bytes,
            "duration_ms": self.duration_ms,
        }
