import logging
import threading
from enum import Enum, auto
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from capture.device_lock import DeviceLockRegistry
from capture.executor import ProcessExecutor, ProcessHandle, stderr_excerpt
from capture.models import DeviceDescriptor

logger = logging.getLogger(__name__)


class StreamState(Enum):
    IDLE = auto()
    STARTING = auto()
    STREAMING = auto()
    STOPPING = auto()


class StreamHandle:
    """
    A live stream owned by exactly one consumer.

    - `read_chunks()` yields process stdout in emission order. It can be
      called once; the stream is not restartable.
    - Closing the iterator (consumer disconnected), the process exiting on its
      own, and `stop()` all end the same way: process killed, device released.
    - A process that exits on its own with a non-zero code is logged as a
      warning with the tail of its stderr.
    """

    def __init__(
            self,
            device: DeviceDescriptor,
            process: ProcessHandle,
            on_stopped: Callable[["StreamHandle"], None],
            excerpt_chars: int = 2_000,
    ) -> None:
        self.device = device
        self._process = process
        self._on_stopped = on_stopped
        self._excerpt_chars = excerpt_chars
        self._lock = threading.Lock()
        self._state = StreamState.STREAMING
        self._reading = False
        self._stderr_tail = bytearray()
        self._stderr_drain = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_drain.start()

    @property
    def state(self) -> StreamState:
        with self._lock:
            return self._state

    def read_chunks(self) -> Iterator[bytes]:
        with self._lock:
            if self._reading:
                raise RuntimeError("Stream chunks can only be read once")
            self._reading = True
        return self._relay()

    def _relay(self) -> Iterator[bytes]:
        try:
            yield from self._process.stdout_chunks()
            if not self._process.cancelled:
                self._report_exit()
        finally:
            self.stop()

    def _drain_stderr(self) -> None:
        # An undrained stderr pipe fills up and stalls the capture tool.
        for chunk in self._process.stderr_chunks():
            logger.debug(f"[{self.device.identifier}] {chunk.decode(errors='ignore').rstrip()}")
            self._stderr_tail += chunk
            del self._stderr_tail[:-self._excerpt_chars]

    def _report_exit(self) -> None:
        exit_code = self._process.wait()
        self._stderr_drain.join(timeout=1.0)
        if exit_code in (None, 0):
            logger.info(f"Stream from {self.device.identifier} ended")
            return

        excerpt = stderr_excerpt(bytes(self._stderr_tail), self._excerpt_chars)
        message = f"Stream from {self.device.identifier} exited with rc={exit_code}"
        if excerpt:
            message += f": {excerpt}"
        logger.warning(message)

    def stop(self) -> None:
        with self._lock:
            if self._state is not StreamState.STREAMING:
                return
            self._state = StreamState.STOPPING

        logger.info(f"Stopping stream from {self.device.identifier}")
        try:
            self._process.kill()
        finally:
            with self._lock:
                self._state = StreamState.IDLE
            self._on_stopped(self)


class StreamRelay:
    """
    Owns every live stream process in the service.

    One stream per device identifier; a second start for the same device
    fails with DeviceBusy before anything is spawned.
    """

    def __init__(
            self,
            executor: ProcessExecutor,
            locks: DeviceLockRegistry,
            excerpt_chars: int = 2_000,
    ):
        self._executor = executor
        self._locks = locks
        self._excerpt_chars = excerpt_chars
        self._lock = threading.Lock()
        self._starting: set = set()
        self._active: Dict[str, StreamHandle] = {}

    def start(self, device: DeviceDescriptor, argv: Sequence[str]) -> StreamHandle:
        self._locks.acquire(device.identifier)

        with self._lock:
            self._starting.add(device.identifier)
        try:
            process = self._executor.run_streaming(argv)
        except BaseException:
            with self._lock:
                self._starting.discard(device.identifier)
            self._locks.release(device.identifier)
            raise

        handle = StreamHandle(device, process, self._stopped, self._excerpt_chars)
        with self._lock:
            self._starting.discard(device.identifier)
            self._active[device.identifier] = handle

        logger.info(f"Streaming from {device.identifier} (pid {process.pid})")
        return handle

    def state(self, identifier: str) -> StreamState:
        with self._lock:
            if identifier in self._starting:
                return StreamState.STARTING
            handle = self._active.get(identifier)
        return handle.state if handle is not None else StreamState.IDLE

    def active_devices(self) -> List[str]:
        with self._lock:
            return list(self._active)

    def get(self, identifier: str) -> Optional[StreamHandle]:
        with self._lock:
            return self._active.get(identifier)

    def stop_all(self) -> int:
        with self._lock:
            handles = list(self._active.values())
        for handle in handles:
            handle.stop()
        return len(handles)

    def _stopped(self, handle: StreamHandle) -> None:
        with self._lock:
            if self._active.get(handle.device.identifier) is handle:
                del self._active[handle.device.identifier]
        self._locks.release(handle.device.identifier)
        logger.info(f"Released {handle.device.identifier}")
