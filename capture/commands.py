"""
Per-platform capture command templates.

Selecting the tool and its flags is data: `COMMAND_TEMPLATES` maps a
(platform, kind) pair to a program setting and an argument template. Every
template element is formatted on its own, so a device name or path can never
become more than one argv element, whatever characters it holds.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from capture.errors import UnsupportedPlatform
from capture.models import CaptureKind, CaptureRequest, DeviceDescriptor, Platform
from capture.settings import CaptureSettings

# Live H.264 in an MPEG-TS container on stdout.
_STREAM_OUTPUT = (
    "-c:v", "libx264",
    "-preset", "ultrafast",
    "-tune", "zerolatency",
    "-pix_fmt", "yuv420p",
    "-f", "mpegts",
    "pipe:1",
)


@dataclass(frozen=True)
class CommandTemplate:
    # Name of the CaptureSettings attribute holding the program path.
    program_setting: str
    args: Tuple[str, ...]

    def render(self, settings: CaptureSettings, values: Dict[str, str]) -> List[str]:
        program = getattr(settings, self.program_setting)
        return [program, *(arg.format(**values) for arg in self.args)]


COMMAND_TEMPLATES: Dict[Tuple[Platform, CaptureKind], CommandTemplate] = {
    # macOS: imagesnap for stills, ffmpeg/avfoundation for video.
    (Platform.MACOS, CaptureKind.PHOTO): CommandTemplate(
        "imagesnap_path",
        ("-w", "{warmup_seconds}", "-d", "{device}", "{path}"),
    ),
    (Platform.MACOS, CaptureKind.VIDEO): CommandTemplate(
        "ffmpeg_path",
        ("-y", "-f", "avfoundation", "-framerate", "30", "-i", "{device}",
         "-t", "{duration_seconds}", "{path}"),
    ),
    (Platform.MACOS, CaptureKind.STREAM): CommandTemplate(
        "ffmpeg_path",
        ("-f", "avfoundation", "-framerate", "30", "-i", "{device}", *_STREAM_OUTPUT),
    ),
    # Windows: DirectShow addresses the camera by its friendly name.
    (Platform.WINDOWS, CaptureKind.PHOTO): CommandTemplate(
        "ffmpeg_path",
        ("-y", "-f", "dshow", "-i", "video={device}", "-frames:v", "1", "{path}"),
    ),
    (Platform.WINDOWS, CaptureKind.VIDEO): CommandTemplate(
        "ffmpeg_path",
        ("-y", "-f", "dshow", "-i", "video={device}", "-t", "{duration_seconds}", "{path}"),
    ),
    (Platform.WINDOWS, CaptureKind.STREAM): CommandTemplate(
        "ffmpeg_path",
        ("-f", "dshow", "-i", "video={device}", *_STREAM_OUTPUT),
    ),
    # Linux: video4linux2 device node.
    (Platform.LINUX, CaptureKind.PHOTO): CommandTemplate(
        "ffmpeg_path",
        ("-y", "-f", "video4linux2", "-i", "{device}", "-frames:v", "1", "{path}"),
    ),
    (Platform.LINUX, CaptureKind.VIDEO): CommandTemplate(
        "ffmpeg_path",
        ("-y", "-f", "video4linux2", "-i", "{device}", "-t", "{duration_seconds}", "{path}"),
    ),
    (Platform.LINUX, CaptureKind.STREAM): CommandTemplate(
        "ffmpeg_path",
        ("-f", "video4linux2", "-i", "{device}", *_STREAM_OUTPUT),
    ),
}


def _seconds(milliseconds: int) -> str:
    # Exact decimal seconds; ffmpeg rejects exponent notation.
    seconds, millis = divmod(int(milliseconds), 1000)
    if not millis:
        return str(seconds)
    return f"{seconds}.{millis:03d}".rstrip("0")


def build_command(
        device: DeviceDescriptor,
        request: CaptureRequest,
        settings: CaptureSettings,
) -> List[str]:
    """Return the argv for capturing `request` from `device`."""
    template = COMMAND_TEMPLATES.get((device.platform, request.kind))
    if template is None:
        raise UnsupportedPlatform(f"{device.platform.name}/{request.kind.name}")

    values = {
        "device": device.identifier,
        "path": str(request.target_path),
        "warmup_seconds": f"{settings.photo_warmup_seconds:g}",
        "duration_seconds": _seconds(request.fixed_duration_ms),
    }
    return template.render(settings, values)


def program_for(platform: Platform, kind: CaptureKind, settings: CaptureSettings) -> str:
    template = COMMAND_TEMPLATES.get((platform, kind))
    if template is None:
        raise UnsupportedPlatform(f"{platform.name}/{kind.name}")
    return getattr(settings, template.program_setting)
