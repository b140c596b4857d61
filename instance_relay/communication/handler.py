"""Callback interface implemented by the embedding application."""
from typing import Protocol


class RemoteMessageHandler(Protocol):
    def handle_command_line_arguments(self, arguments: list[str]) -> None:
        """Act on arguments forwarded by another instance.

        Called on the listener thread, once per non-empty request.
        """
        ...
