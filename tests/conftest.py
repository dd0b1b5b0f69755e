import threading
import time

import pytest


class RecordingDisplay:
    """Collects everything a session manager shows to its operator."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._messages: list[str] = []

    def display(self, message: str) -> None:
        with self._lock:
            self._messages.append(message)

    @property
    def messages(self) -> list[str]:
        with self._lock:
            return list(self._messages)

    def count(self, message: str) -> int:
        return self.messages.count(message)


def _wait_for(predicate, timeout: float = 5.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def make_display():
    return RecordingDisplay


@pytest.fixture
def wait_for():
    return _wait_for
