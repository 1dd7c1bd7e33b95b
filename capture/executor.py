from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from functools import partial
from typing import Iterator, Optional, Sequence

from capture.errors import CaptureTimeout, ExecutionFailed

logger = logging.getLogger(__name__)

# Conventional shell exit status for "command not found".
EXIT_NOT_FOUND = 127


def stderr_excerpt(stderr: bytes, limit: int = 2_000) -> str:
    """Decode and keep the tail of `stderr`; tools print the real error last."""
    text = stderr.decode(errors="ignore").strip()
    if len(text) > limit:
        text = "..." + text[-limit:]
    return text


@dataclass(frozen=True)
class ProcessOutcome:
    exit_code: int
    stdout: bytes
    stderr: bytes

    def check(self, excerpt_chars: int = 2_000) -> "ProcessOutcome":
        if self.exit_code != 0:
            raise ExecutionFailed(self.exit_code, stderr_excerpt(self.stderr, excerpt_chars))
        return self


class ProcessHandle:
    """
    A live, streaming child process.

    The handle owns the process: whoever receives it is responsible for
    calling `kill()`. `kill()` also sets the cancellation event, which ends
    `stdout_chunks()` at the next chunk boundary.
    """

    def __init__(
            self,
            process: subprocess.Popen,
            chunk_size: int = 64 * 1024,
            stop_timeout: float = 5.0,
    ) -> None:
        self._process = process
        self._chunk_size = chunk_size
        self._stop_timeout = stop_timeout
        self._cancelled = threading.Event()
        self._kill_lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.poll()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def stdout_chunks(self) -> Iterator[bytes]:
        yield from self._chunks(self._process.stdout)

    def stderr_chunks(self) -> Iterator[bytes]:
        yield from self._chunks(self._process.stderr)

    def _chunks(self, pipe) -> Iterator[bytes]:
        if pipe is None:
            return
        try:
            # Unbuffered pipes: read() returns as soon as any bytes are available.
            for chunk in iter(partial(pipe.read, self._chunk_size), b""):
                if self._cancelled.is_set():
                    break
                yield chunk
        finally:
            pipe.close()

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """Exit code, or None if the process is still running after `timeout` seconds."""
        try:
            return self._process.wait(timeout=self._stop_timeout if timeout is None else timeout)
        except subprocess.TimeoutExpired:
            return None

    def kill(self) -> None:
        """Terminate the process and wait for it to exit. Idempotent."""
        self._cancelled.set()
        with self._kill_lock:
            if self._process.poll() is None:
                self._process.kill()
            try:
                self._process.wait(timeout=self._stop_timeout)
            except subprocess.TimeoutExpired:
                logger.error(f"Process {self._process.pid} did not exit after kill")


class ProcessExecutor:
    """Runs capture tool invocations. Never goes through a shell."""

    def __init__(
            self,
            chunk_size: int = 64 * 1024,
            stop_timeout: float = 5.0,
    ) -> None:
        self._chunk_size = chunk_size
        self._stop_timeout = stop_timeout

    def run_to_completion(self, argv: Sequence[str], timeout_ms: Optional[int]) -> ProcessOutcome:
        """
        Run `argv` until it exits.

        - Raises CaptureTimeout after `timeout_ms` (the child is killed first).
        - Raises ExecutionFailed if the program cannot be started.
        - A non-zero exit is returned, not raised; use `ProcessOutcome.check()`.
        """
        cmd = list(argv)
        timeout = timeout_ms / 1000 if timeout_ms else None
        logger.debug(f"Running {cmd} (timeout={timeout_ms} ms)")

        try:
            proc = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"{cmd[0]} timed out after {timeout_ms} ms")
            raise CaptureTimeout(timeout_ms) from e
        except OSError as e:
            logger.warning(f"Could not start {cmd[0]}: {e}")
            raise ExecutionFailed(EXIT_NOT_FOUND, str(e)) from e

        if proc.stderr:
            logger.debug(f"Capture logs: {proc.stderr.decode(errors='ignore').strip()}")
        if proc.returncode != 0:
            logger.warning(f"{cmd[0]} exited with rc={proc.returncode}")

        return ProcessOutcome(
            exit_code=proc.returncode,
            stdout=proc.stdout or b"",
            stderr=proc.stderr or b"",
        )

    def run_streaming(self, argv: Sequence[str]) -> ProcessHandle:
        """Start `argv` with piped output and return immediately."""
        cmd = list(argv)
        logger.debug(f"Starting stream {cmd}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )
        except OSError as e:
            logger.warning(f"Could not start {cmd[0]}: {e}")
            raise ExecutionFailed(EXIT_NOT_FOUND, str(e)) from e

        return ProcessHandle(
            process,
            chunk_size=self._chunk_size,
            stop_timeout=self._stop_timeout,
        )
