import threading
from contextlib import contextmanager
from typing import Iterator, Set

from capture.errors import DeviceBusy


class DeviceLockRegistry:
    """
    Per-device exclusivity.

    At most one invocation may hold a device identifier at a time. Acquiring
    never blocks: a held device is reported as busy.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._held: Set[str] = set()

    def try_acquire(self, identifier: str) -> bool:
        with self._guard:
            if identifier in self._held:
                return False
            self._held.add(identifier)
            return True

    def acquire(self, identifier: str) -> None:
        if not self.try_acquire(identifier):
            raise DeviceBusy(identifier)

    def release(self, identifier: str) -> None:
        with self._guard:
            self._held.discard(identifier)

    def is_held(self, identifier: str) -> bool:
        with self._guard:
            return identifier in self._held

    @contextmanager
    def hold(self, identifier: str) -> Iterator[None]:
        self.acquire(identifier)
        try:
            yield
        finally:
            self.release(identifier)


# Shared by every orchestrator in the process.
DEVICE_LOCKS = DeviceLockRegistry()
