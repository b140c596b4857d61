"""Lifecycle of the remote listener owned by the primary instance."""
import enum
import logging
import threading

from instance_relay.communication.handler import RemoteMessageHandler
from instance_relay.communication.ipc_server import (
    DEFAULT_READ_TIMEOUT,
    RemoteListenerServer,
)

STOP_JOIN_TIMEOUT = 2.0


class ListenerState(enum.Enum):
    UNOPENED = "unopened"
    OPENED = "opened"
    STARTED = "started"
    STOPPED = "stopped"


class RemoteListenerServerManager:
    """Owns the listening socket and the thread serving it.

    Failing to bind the port is not an error for the caller: the manager just
    stays closed and ``is_open()`` reports False. ``stop()`` always ends in
    ``STOPPED``, even when nothing was opened, and a stopped manager may be
    opened again. If the accept loop dies on its own the manager moves to
    ``STOPPED`` too. Use it as a context manager to guarantee the socket is
    released::

        with RemoteListenerServerManager() as manager:
            manager.open_and_start(handler, port)
            ...
    """

    def __init__(self, read_timeout: float = DEFAULT_READ_TIMEOUT):
        self.read_timeout = read_timeout
        self._lock = threading.Lock()
        self._state = ListenerState.UNOPENED
        self._server = None
        self._thread = None
        self._started_before = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

    @property
    def state(self) -> ListenerState:
        with self._lock:
            return self._state

    @property
    def port(self) -> int | None:
        """Port of the bound socket, None while closed."""
        with self._lock:
            return self._server.port if self._server else None

    def is_open(self) -> bool:
        with self._lock:
            return self._state in (ListenerState.OPENED, ListenerState.STARTED)

    def is_not_started_before(self) -> bool:
        with self._lock:
            return not self._started_before

    def open(self, handler: RemoteMessageHandler, port: int) -> None:
        """Bind the loopback port without serving it yet."""
        with self._lock:
            if self._state in (ListenerState.OPENED, ListenerState.STARTED):
                logging.warning("Remote listener already open on port %d",
                                self._server.port)
                return
            try:
                self._server = RemoteListenerServer(
                    handler, port, read_timeout=self.read_timeout)
            except (OSError, OverflowError) as e:
                logging.error(
                    "Could not open port %d for the remote listener. Please "
                    "ensure no other application is using it: %s", port, e)
                return
            self._state = ListenerState.OPENED
            logging.debug("Remote listener bound to port %d",
                          self._server.port)

    def start(self) -> None:
        """Spawn the accept thread; only valid right after ``open``."""
        with self._lock:
            if self._state is not ListenerState.OPENED:
                logging.debug("Remote listener not started from state %s",
                              self._state.value)
                return
            thread = threading.Thread(
                target=self._serve,
                args=(self._server,),
                name=f"remote-listener-{self._server.port}",
                daemon=True,
            )
            try:
                thread.start()
            except BaseException:
                self._server.close()
                self._server = None
                self._state = ListenerState.STOPPED
                raise
            self._thread = thread
            self._state = ListenerState.STARTED
            self._started_before = True

    def open_and_start(self, handler: RemoteMessageHandler, port: int) -> None:
        self.open(handler, port)
        if self.is_open():
            self.start()

    def stop(self) -> None:
        """Stop serving and release the port. Idempotent."""
        with self._lock:
            if self._state is ListenerState.UNOPENED:
                self._state = ListenerState.STOPPED
                return
            if self._state is ListenerState.STOPPED:
                return
            server, thread = self._server, self._thread
            self._server = None
            self._thread = None
            self._state = ListenerState.STOPPED

        if thread is not None:
            server.shutdown()
            thread.join(timeout=STOP_JOIN_TIMEOUT)
            if thread.is_alive():
                logging.warning(
                    "Remote listener thread on port %d did not exit in time",
                    server.port)
        server.close()

    close = stop

    def _serve(self, server: RemoteListenerServer) -> None:
        server.serve_forever()
        with self._lock:
            # still ours: the loop ended without stop() being called
            if self._server is server:
                logging.warning(
                    "Remote listener on port %d exited unexpectedly",
                    server.port)
                self._server = None
                self._thread = None
                self._state = ListenerState.STOPPED
        server.close()
