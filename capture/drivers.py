from __future__ import annotations

import logging
import re
import shutil
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Type

from capture.commands import build_command, program_for
from capture.errors import CameraNotFound, CaptureError, UnsupportedPlatform
from capture.executor import ProcessExecutor
from capture.models import CaptureKind, CaptureRequest, DeviceDescriptor, Platform
from capture.settings import CaptureSettings

logger = logging.getLogger(__name__)


class CameraDeviceDriver(ABC):
    """
    Platform camera driver.

    Resolves the active camera and builds capture commands for it. Drivers
    never cache devices: cameras can be plugged and unplugged between requests.
    """

    platform: Platform
    # CaptureSettings attribute naming the device listing tool, if any.
    listing_setting: Optional[str] = None

    def __init__(self, settings: CaptureSettings, executor: ProcessExecutor):
        self.settings = settings
        self.executor = executor

    @abstractmethod
    def list_devices(self) -> List[DeviceDescriptor]:
        """Return every usable camera, best candidate first."""
        pass

    def resolve(self) -> DeviceDescriptor:
        devices = self.list_devices()
        if not devices:
            raise CameraNotFound(f"No camera found on {self.platform.name}")
        device = devices[0]
        logger.debug(f"Resolved camera {device.identifier!r} on {self.platform.name}")
        return device

    def build_command(self, device: DeviceDescriptor, request: CaptureRequest) -> List[str]:
        return build_command(device, request, self.settings)

    def required_programs(self) -> List[str]:
        programs = []
        if self.listing_setting:
            programs.append(getattr(self.settings, self.listing_setting))
        for kind in CaptureKind:
            program = program_for(self.platform, kind, self.settings)
            if program not in programs:
                programs.append(program)
        return programs

    def missing_programs(self) -> List[str]:
        return [p for p in self.required_programs() if shutil.which(p) is None]

    def _list_output(self, argv: List[str]) -> str:
        """Run a device listing tool; any failure means no camera."""
        try:
            outcome = self.executor.run_to_completion(
                argv, self.settings.enumeration_timeout_ms
            ).check(self.settings.stderr_excerpt_chars)
        except CaptureError as e:
            logger.warning(f"Device listing failed: {e}")
            raise CameraNotFound(f"Could not list cameras: {e.message}") from e
        # imagesnap prints its listing on stdout; some builds use stderr.
        return (outcome.stdout + b"\n" + outcome.stderr).decode(errors="ignore")


# imagesnap -l prints either "=> Name" or "[0x1234] Name" per device.
_IMAGESNAP_ENTRY = re.compile(r"^\s*(?:=>\s*|\[[^\]]*\]\s*)(?P<name>\S.*?)\s*$")


def parse_imagesnap_devices(output: str) -> List[str]:
    names = []
    for line in output.splitlines():
        match = _IMAGESNAP_ENTRY.match(line)
        if match:
            names.append(match.group("name"))
    return names


_V4L2_NODE = re.compile(r"^\s+(/dev/video\d+)\s*$")


def parse_v4l2_devices(output: str) -> List[str]:
    """
    Parse `v4l2-ctl --list-devices`.

    Each device heading is followed by indented nodes; only the first
    /dev/videoN of each device can capture. USB cameras come first so that
    platform codecs (e.g. bcm2835 on a Pi) are not picked over a webcam.
    """
    usb, other = [], []
    heading = ""
    taken = False
    for line in output.splitlines():
        if not line.strip():
            continue
        if not line[0].isspace():
            heading = line
            taken = False
            continue
        match = _V4L2_NODE.match(line)
        if match and not taken:
            taken = True
            (usb if "usb" in heading.lower() else other).append(match.group(1))
    return usb + other


class MacDriver(CameraDeviceDriver):
    platform = Platform.MACOS
    listing_setting = "imagesnap_path"

    def list_devices(self) -> List[DeviceDescriptor]:
        output = self._list_output([self.settings.imagesnap_path, "-l"])
        return [DeviceDescriptor(self.platform, name) for name in parse_imagesnap_devices(output)]


class LinuxDriver(CameraDeviceDriver):
    platform = Platform.LINUX
    listing_setting = "v4l2_ctl_path"

    def list_devices(self) -> List[DeviceDescriptor]:
        output = self._list_output([self.settings.v4l2_ctl_path, "--list-devices"])
        return [DeviceDescriptor(self.platform, node) for node in parse_v4l2_devices(output)]


class WindowsDriver(CameraDeviceDriver):
    """DirectShow has no reliable enumeration; the device name is configured."""

    platform = Platform.WINDOWS

    def list_devices(self) -> List[DeviceDescriptor]:
        name = self.settings.windows_device_name.strip()
        if not name:
            return []
        return [DeviceDescriptor(self.platform, name)]


DRIVERS: Dict[Platform, Type[CameraDeviceDriver]] = {
    Platform.MACOS: MacDriver,
    Platform.WINDOWS: WindowsDriver,
    Platform.LINUX: LinuxDriver,
}


def driver_for(
        platform: Optional[Platform],
        settings: CaptureSettings,
        executor: ProcessExecutor,
) -> CameraDeviceDriver:
    driver_cls = DRIVERS.get(platform) if platform is not None else None
    if driver_cls is None:
        raise UnsupportedPlatform(platform.name if platform is not None else None)
    return driver_cls(settings, executor)
