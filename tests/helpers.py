import time
from typing import Callable


def wait_for(
        condition: Callable[[], bool],
        timeout: float = 5.0,
        interval: float = 0.01,
        message: str = "Condition not met before timeout",
):
    """
    Poll condition() until it returns True.

    Used where a stream reader runs on another thread. Raises
    AssertionError(message) once `timeout` seconds pass.
    """
    deadline = time.monotonic() + timeout

    while time.monotonic() < deadline:
        if condition():
            return
        time.sleep(interval)

    raise AssertionError(message)
