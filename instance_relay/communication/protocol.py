"""Wire format shared by the remote client and server.

A request is a JSON array of strings terminated by a NUL byte. The server
answers with a fixed acknowledgment token, also NUL terminated.
"""
import json
from typing import Sequence

END_OF_MESSAGE = b"\0"
ACKNOWLEDGMENT_TOKEN = "InstanceRelay/1 ACK"
ACKNOWLEDGMENT = ACKNOWLEDGMENT_TOKEN.encode("utf-8") + END_OF_MESSAGE

# Upper bound for one request frame, terminator included.
MAX_REQUEST_SIZE = 1024 * 1024


class RemoteProtocolError(Exception):
    """Raised when a received frame does not follow the wire format."""


def encode_request(arguments: Sequence[str]) -> bytes:
    """Encode command line arguments into one request frame.

    Args:
        arguments: Arguments to forward, possibly empty (ping)

    Returns:
        Frame bytes including the terminator
    """
    for argument in arguments:
        if not isinstance(argument, str):
            raise TypeError(
                f"arguments must be strings, got {type(argument).__name__}")
    payload = json.dumps(list(arguments), ensure_ascii=False)
    return payload.encode("utf-8") + END_OF_MESSAGE


def decode_request(frame: bytes) -> list[str]:
    """Decode one request frame back into its argument list.

    Args:
        frame: Received bytes, with or without the trailing terminator

    Returns:
        The forwarded arguments in order

    Raises:
        RemoteProtocolError: If the frame is not a JSON array of strings
    """
    if frame.endswith(END_OF_MESSAGE):
        frame = frame[:-len(END_OF_MESSAGE)]
    try:
        arguments = json.loads(frame.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise RemoteProtocolError(f"request is not valid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise RemoteProtocolError(f"request is not valid JSON: {e}") from e

    if not isinstance(arguments, list):
        raise RemoteProtocolError("request must be a JSON array")
    if not all(isinstance(argument, str) for argument in arguments):
        raise RemoteProtocolError("request may only contain strings")
    return arguments


def is_acknowledgment(data: bytes) -> bool:
    """Return True if ``data`` is exactly the server acknowledgment."""
    return data == ACKNOWLEDGMENT
