import logging
import time
from pathlib import Path

from capture.errors import OutputMissing
from capture.models import CaptureResult

logger = logging.getLogger(__name__)


def discard_partial(path: Path) -> None:
    """Best-effort removal of a partially written capture."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Could not remove partial capture {path}: {e}")


def validate(path: Path, started_at: float) -> CaptureResult:
    """
    Confirm a finished capture produced a non-empty file.

    `started_at` is a `time.monotonic()` reading taken just before the tool
    was started. Capture tools can exit 0 without writing anything (e.g. no
    camera attached), so the file itself is the source of truth.
    """
    try:
        size = path.stat().st_size if path.is_file() else 0
    except OSError:
        size = 0

    if size <= 0:
        discard_partial(path)
        raise OutputMissing(f"Capture tool reported success but no output was written to {path}")

    duration_ms = max(0, int((time.monotonic() - started_at) * 1000))
    return CaptureResult(path=path, size_bytes=size, duration_ms=duration_ms)
