"""IPC client for talking to an already running instance."""
import logging
import socket
import time
from typing import Sequence

from instance_relay.communication.protocol import (
    ACKNOWLEDGMENT,
    END_OF_MESSAGE,
    encode_request,
    is_acknowledgment,
)

LOCALHOST = "127.0.0.1"
DEFAULT_TIMEOUT = 1.0


class RemoteClient:
    """One-shot client for the remote listener of the primary instance.

    Every call opens a fresh connection, sends one request and waits for the
    acknowledgment. Network trouble is reported as ``False``, never raised.
    """

    def __init__(self, port: int, host: str = LOCALHOST,
                 timeout: float = DEFAULT_TIMEOUT):
        self.port = port
        self.host = host
        self.timeout = timeout

    def ping(self) -> bool:
        """Check whether a compliant instance listens on the port."""
        return self._round_trip([])

    def send_command_line_arguments(self, arguments: Sequence[str]) -> bool:
        """Forward arguments to the running instance.

        Args:
            arguments: Command line arguments of this process

        Returns:
            True if the running instance acknowledged them
        """
        return self._round_trip(list(arguments))

    def _round_trip(self, arguments: list[str]) -> bool:
        request = encode_request(arguments)
        try:
            with socket.create_connection((self.host, self.port),
                                          timeout=self.timeout) as sock:
                sock.sendall(request)
                response = _read_response(sock, self.timeout)
        except ConnectionRefusedError:
            logging.debug("No instance listening on port %d", self.port)
            return False
        except socket.timeout:
            logging.warning("Timed out waiting for an answer on port %d",
                            self.port)
            return False
        except OSError as e:
            logging.debug("Could not reach port %d: %s", self.port, e)
            return False

        if not response:
            logging.warning("Port %d closed the connection without "
                            "acknowledging the request", self.port)
            return False
        if not is_acknowledgment(response):
            logging.warning(
                "Another process is listening on port %d but did not "
                "answer as a running instance", self.port)
            return False
        return True


def _read_response(sock: socket.socket, timeout: float) -> bytes:
    """Read until the terminator, EOF, or the acknowledgment length.

    ``timeout`` bounds the whole read, not each ``recv``.
    """
    deadline = time.monotonic() + timeout
    data = b""
    while len(data) < len(ACKNOWLEDGMENT):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("acknowledgment not received in time")
        sock.settimeout(remaining)
        chunk = sock.recv(len(ACKNOWLEDGMENT) - len(data))
        if not chunk:
            break
        data += chunk
        if data.endswith(END_OF_MESSAGE):
            break
    return data


def check_existing_instance(port: int, timeout: float = DEFAULT_TIMEOUT) -> bool:
    """Check if another instance is already running.

    Args:
        port: Port to check
        timeout: Connect and read timeout in seconds

    Returns:
        True if instance exists, False otherwise
    """
    return RemoteClient(port, timeout=timeout).ping()
