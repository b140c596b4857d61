"""Shared fixtures for the remote listener tests."""

import socket
import threading

import pytest


class RecordingHandler:
    """Message handler remembering every argument list it was given."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: list[list[str]] = []
        self.fail_on = fail_on
        self._lock = threading.Lock()

    def handle_command_line_arguments(self, arguments: list[str]) -> None:
        with self._lock:
            self.calls.append(list(arguments))
        if self.fail_on is not None and self.fail_on in arguments:
            raise RuntimeError(f"refusing {self.fail_on}")


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def free_port() -> int:
    """Return a loopback port nobody listens on right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
