"""TCP connection to the application under test.

The application attaches to the bridge's listening port. Only one
application connection is live at a time; a new one replaces the previous
connection and everything issued under it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum

from .codec import LENGTH_PREFIX, MAX_MESSAGE_SIZE, frame
from .errors import BindError, ConnectionLost, ProtocolError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4242
DEFAULT_TIMEOUT = 30.0


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"

    def __str__(self) -> str:
        return self.value


@dataclass
class _Peer:
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    address: str
    # Response bodies, or the error that ended the connection.
    responses: asyncio.Queue[bytes | Exception] = field(default_factory=asyncio.Queue)
    reader_task: asyncio.Task[None] | None = None
    pending: bool = False
    closed: bool = False


class ConnectionManager:
    """Owns the listening socket and the single peer connection.

    ``call`` is the only way to talk to the peer. The remote protocol has no
    request ids, so responses are paired with requests purely by order: at
    most one round trip is in flight, and waiting callers are served in the
    order they arrived (``asyncio.Lock`` wakes waiters FIFO).

    Each peer has a reader task that owns the socket's read side. It hands
    response frames to the caller awaiting one and notices the peer closing
    even while no round trip is in flight.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self._server: asyncio.Server | None = None
        self._peer: _Peer | None = None
        self._lock = asyncio.Lock()
        self._attached = asyncio.Event()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Bind the listening socket.

        Raises:
            BindError: If the port cannot be bound.
        """
        try:
            self._server = await asyncio.start_server(
                self._on_peer, self.host, self.port
            )
        except OSError as e:
            raise BindError(f"Failed to bind to {self.host}:{self.port}: {e}") from e

        self.port = self._server.sockets[0].getsockname()[1]
        logger.info(
            "Listening on %s:%d for application connection...", self.host, self.port
        )

    async def close(self) -> None:
        """Close the peer connection and stop listening."""
        peer = self._peer
        if peer:
            self._drop(peer, "bridge shutting down")
            if peer.reader_task:
                await asyncio.gather(peer.reader_task, return_exceptions=True)
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def accept(self, timeout: float | None = None) -> str:
        """Block until a peer is attached and return its address.

        Raises:
            ConnectionLost: If no peer attaches within ``timeout``.
        """
        try:
            await asyncio.wait_for(self._attached.wait(), timeout)
        except asyncio.TimeoutError:
            raise ConnectionLost(
                f"No application attached to {self.host}:{self.port} "
                f"within {timeout}s"
            ) from None
        if self._peer is None:
            raise ConnectionLost("Application disconnected")
        return self._peer.address

    def reset(self, reason: str) -> None:
        """Drop the current peer connection, if any."""
        if self._peer:
            self._drop(self._peer, reason)

    @property
    def state(self) -> ConnectionState:
        if self._peer is None:
            return ConnectionState.DISCONNECTED
        return ConnectionState.CONNECTED

    @property
    def is_connected(self) -> bool:
        return self._peer is not None

    @property
    def peer(self) -> str | None:
        return self._peer.address if self._peer else None

    async def _on_peer(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peername = writer.get_extra_info("peername")
        address = f"{peername[0]}:{peername[1]}" if peername else "unknown"

        previous = self._peer
        peer = _Peer(reader, writer, address)
        self._peer = peer
        if previous:
            logger.info("Application at %s replaced by %s", previous.address, address)
            self._drop(previous, f"replaced by {address}")
        peer.reader_task = asyncio.create_task(self._read_loop(peer))
        logger.info("Application connected from %s", address)
        self._attached.set()

    def _drop(self, peer: _Peer, reason: str, error: Exception | None = None) -> None:
        if self._peer is peer:
            self._peer = None
            self._attached.clear()
            logger.warning("Application at %s disconnected: %s", peer.address, reason)
        if peer.closed:
            return
        peer.closed = True
        # wakes a caller waiting on this peer's response
        peer.responses.put_nowait(error or ConnectionLost(f"Connection lost: {reason}"))
        if peer.reader_task and peer.reader_task is not asyncio.current_task():
            peer.reader_task.cancel()
        if not peer.writer.is_closing():
            peer.writer.close()

    async def _read_loop(self, peer: _Peer) -> None:
        try:
            while True:
                header = await peer.reader.readexactly(LENGTH_PREFIX.size)
                (length,) = LENGTH_PREFIX.unpack(header)
                if length > MAX_MESSAGE_SIZE:
                    raise ProtocolError(
                        f"Response too large: {length} bytes (max {MAX_MESSAGE_SIZE})"
                    )
                body = await peer.reader.readexactly(length)
                if not peer.pending:
                    raise ProtocolError("Unsolicited message from application")
                logger.debug("Received %d bytes", length)
                peer.responses.put_nowait(body)
        except asyncio.IncompleteReadError:
            self._drop(peer, "application closed the connection")
        except (ConnectionError, OSError) as e:
            self._drop(peer, str(e) or type(e).__name__)
        except ProtocolError as e:
            self._drop(peer, str(e), e)

    # -------------------------------------------------------------------------
    # Round trips
    # -------------------------------------------------------------------------

    async def call(self, payload: bytes) -> bytes:
        """Send one request and return the matching response body.

        A call made while no application is attached waits for one, up to the
        timeout. The wait happens before queueing, so concurrent callers
        share the same deadline.

        Raises:
            ConnectionLost: No peer, peer gone, I/O failure or timeout.
            ProtocolError: The response frame is oversized or unsolicited.
        """
        data = frame(payload)
        if self._peer is None:
            logger.info("Waiting for application to connect...")
            await self.accept(self.timeout)
        # A caller is bound to the peer it was issued under: if that peer is
        # replaced or lost while the caller is queued, its handles are void.
        peer = self._peer

        async with self._lock:
            if peer is None or peer is not self._peer or peer.closed:
                raise ConnectionLost("Connection to the application was lost or replaced")
            try:
                return await asyncio.wait_for(self._round_trip(peer, data), self.timeout)
            except asyncio.TimeoutError:
                self._drop(peer, "round trip timed out")
                raise ConnectionLost(
                    f"Round trip timed out after {self.timeout}s"
                ) from None
            except (ConnectionLost, ProtocolError) as e:
                self._drop(peer, str(e))
                raise
            except (ConnectionError, OSError) as e:
                self._drop(peer, str(e) or type(e).__name__)
                raise ConnectionLost(f"Connection lost: {e}") from e
            except asyncio.CancelledError:
                # the response to this request would be read by the next caller
                self._drop(peer, "round trip cancelled")
                raise

    async def _round_trip(self, peer: _Peer, data: bytes) -> bytes:
        peer.pending = True
        try:
            peer.writer.write(data)
            await peer.writer.drain()
            response = await peer.responses.get()
        finally:
            peer.pending = False
        if isinstance(response, Exception):
            raise response
        logger.debug("Round trip: sent %d bytes, received %d bytes", len(data), len(response))
        return response
