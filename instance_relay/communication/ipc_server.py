"""IPC server receiving arguments forwarded by secondary instances."""
import asyncio
import logging
import socket

from instance_relay.communication.handler import RemoteMessageHandler
from instance_relay.communication.protocol import (
    ACKNOWLEDGMENT,
    END_OF_MESSAGE,
    MAX_REQUEST_SIZE,
    RemoteProtocolError,
    decode_request,
)

LOCALHOST = "127.0.0.1"
# Shorter than the client timeout so one silent peer cannot outlast a real
# secondary launch waiting behind it.
DEFAULT_READ_TIMEOUT = 0.5


class RemoteListenerServer:
    """Loopback listener serving one connection at a time.

    The socket is bound when the object is created, so a port conflict
    surfaces as ``OSError`` from the constructor. Requests whose sender has
    already closed the connection are dropped unhandled: that sender gave up
    waiting and handles its arguments itself. ``serve_forever`` runs a
    private event loop and is meant to be the target of a dedicated thread.
    """

    def __init__(self, handler: RemoteMessageHandler, port: int,
                 read_timeout: float = DEFAULT_READ_TIMEOUT):
        self.handler = handler
        self.read_timeout = read_timeout
        self._sock = socket.create_server((LOCALHOST, port))
        # port 0 lets the OS choose
        self.port = self._sock.getsockname()[1]
        self._loop = asyncio.new_event_loop()
        self._stopping = asyncio.Event()
        self._serial = asyncio.Lock()
        self._writers = set()

    def serve_forever(self) -> None:
        """Accept and serve connections until ``shutdown`` is called."""
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._serve())
        except Exception as e:
            logging.error("Remote listener on port %d failed: %s", self.port, e)
        finally:
            pending = asyncio.all_tasks(self._loop)
            for task in pending:
                task.cancel()
            if pending:
                self._loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True))
            self._sock.close()
            self._loop.close()

    def shutdown(self) -> None:
        """Ask a running ``serve_forever`` to return. Safe from any thread."""
        try:
            self._loop.call_soon_threadsafe(self._stopping.set)
        except RuntimeError:
            # loop already closed
            pass

    def close(self) -> None:
        """Release the listening socket and the event loop."""
        self._sock.close()
        if not self._loop.is_running() and not self._loop.is_closed():
            self._loop.close()

    async def _serve(self) -> None:
        server = await asyncio.start_server(
            self._handle_client, sock=self._sock, limit=MAX_REQUEST_SIZE)
        logging.info("Remote listener accepting connections on port %d",
                     self.port)
        try:
            await self._stopping.wait()
        finally:
            server.close()
            for writer in list(self._writers):
                writer.close()
            await server.wait_closed()
        logging.info("Remote listener on port %d stopped", self.port)

    async def _handle_client(self, reader, writer):
        """Serve one request: read, dispatch, acknowledge, close."""
        self._writers.add(writer)
        peer = writer.get_extra_info("peername")
        try:
            async with self._serial:
                arguments = await self._read_request(reader, peer)
                if arguments is None:
                    return
                if reader.at_eof():
                    logging.warning(
                        "Client %s left before its request was served", peer)
                    return
                if arguments and not self._dispatch(arguments):
                    return
                writer.write(ACKNOWLEDGMENT)
                await writer.drain()
        except (ConnectionError, OSError) as e:
            logging.warning("Connection from %s dropped: %s", peer, e)
        finally:
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _read_request(self, reader, peer):
        try:
            frame = await asyncio.wait_for(
                reader.readuntil(END_OF_MESSAGE), self.read_timeout)
            return decode_request(frame)
        except asyncio.TimeoutError:
            logging.warning("No request from %s within %.1fs", peer,
                            self.read_timeout)
        except asyncio.IncompleteReadError:
            logging.warning(
                "Connection from %s closed before a complete request arrived",
                peer)
        except asyncio.LimitOverrunError:
            logging.warning("Request from %s exceeds %d bytes", peer,
                            MAX_REQUEST_SIZE)
        except RemoteProtocolError as e:
            logging.warning("Malformed request from %s: %s", peer, e)
        return None

    def _dispatch(self, arguments: list[str]) -> bool:
        try:
            self.handler.handle_command_line_arguments(arguments)
        except Exception:
            logging.exception("Message handler failed for arguments %s",
                              arguments)
            return False
        return True
