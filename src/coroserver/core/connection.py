"""
=============================================================================
CONNECTION RECORDS
=============================================================================

This module holds the per-connection state the dispatcher works with:
the socket, who is on the other end, what the handler is waiting for, and
how far along that wait is.

=============================================================================
ONE REQUEST AT A TIME
=============================================================================

Every connection is driven by a HANDLER: a generator function that yields
an I/O request whenever it needs the network and gets the result back as
the value of the yield expression.

    def handler(conn):
        greeting = yield conn.receive_line()     # suspend until a full line
        yield conn.send(b"hello " + greeting)    # suspend until fully sent

While the handler is suspended, exactly ONE request is outstanding on its
connection. The request decides which readiness set the connection lands
in on the next poll:

    ┌──────────────────┬────────────────────┬──────────────────────────────┐
    │ Pending request  │ Status             │ Polled for                   │
    ├──────────────────┼────────────────────┼──────────────────────────────┤
    │ None             │ WAITING            │ errors only                  │
    │ ReadExact(n)     │ READING            │ readable + errors            │
    │ ReadLine(hint)   │ READING            │ readable + errors            │
    │ Write(data)      │ WRITING            │ writable + errors            │
    │ (torn down)      │ CLOSED             │ never                        │
    └──────────────────┴────────────────────┴──────────────────────────────┘

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    WAITING ──start──► READING / WRITING ──I/O done──► resume ──┐
       │                    ▲                                   │
       │                    └──────── new request ◄─────────────┤
       │                                                        │
       └──────────────► CLOSED ◄──── finished / failed / I/O error

CLOSED is terminal. A closed connection never goes back into the
registry and its handler is never resumed again.

=============================================================================
"""

import socket
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Generator, Optional, Union


logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """
    What a connection is currently waiting on.

    The multiplexer only looks at this field when deciding where to put
    a connection's descriptor, so it must always agree with the pending
    request (see Connection.begin / Connection.clear_request).
    """
    CLOSED = "closed"
    READING = "reading"
    WRITING = "writing"
    WAITING = "waiting"


# =============================================================================
# I/O REQUESTS
# =============================================================================
# These are the only values a handler may yield. They are plain immutable
# records; all of the actual I/O happens in the framing engine.


@dataclass(frozen=True)
class ReadExact:
    """
    Read exactly `count` bytes.

    count == 0 means "whatever is available in one receive", which is
    always at least one byte.
    """
    count: int = 0

    def __post_init__(self):
        if isinstance(self.count, bool) or not isinstance(self.count, int):
            raise TypeError(f"Read size must be an int, got {type(self.count).__name__}")
        if self.count < 0:
            raise ValueError(f"Read size must be >= 0, got {self.count}")


@dataclass(frozen=True)
class ReadLine:
    """
    Read up to and including the next newline.

    The delivered line has trailing whitespace (the newline, any \\r, and
    any spaces before them) stripped. max_hint is a sizing hint for how
    much to receive per readiness event; 0 uses the engine's scratch size.
    """
    max_hint: int = 0

    def __post_init__(self):
        if isinstance(self.max_hint, bool) or not isinstance(self.max_hint, int):
            raise TypeError(
                f"Line size hint must be an int, got {type(self.max_hint).__name__}"
            )
        if self.max_hint < 0:
            raise ValueError(f"Line size hint must be >= 0, got {self.max_hint}")


@dataclass(frozen=True)
class Write:
    """Send every byte of `data`. Resumes with None once all of it is out."""
    data: bytes

    def __post_init__(self):
        if not isinstance(self.data, bytes):
            raise TypeError(f"Write data must be bytes, got {type(self.data).__name__}")


IORequest = Union[ReadExact, ReadLine, Write]
HandlerGenerator = Generator[IORequest, object, None]


@dataclass(eq=False)
class Connection:
    """
    Represents one accepted client connection.

    Pure state: the framing engine mutates the I/O progress fields, the
    scheduler swaps the pending request on every resume, and the server
    tears the whole thing down at the end.

    Attributes:
        socket: The non-blocking client socket.
        address: Raw address tuple from accept().
        peer_address: Printable peer IP (IPv4-mapped IPv6 shown as IPv4).
        peer_port: Peer port as a decimal string.
        id: Short unique identifier for logs.
        status: Current wait reason.
        request: The single pending I/O request, if any.
        bytes_done: Progress on the pending request.
    """

    # Required parameters
    socket: socket.socket
    address: tuple
    peer_address: str
    peer_port: str

    # Identity and lifecycle
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    status: ConnectionStatus = ConnectionStatus.WAITING
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)

    # Pending request and its progress
    request: Optional[IORequest] = None
    bytes_done: int = 0

    # Traffic counters (for the access log)
    bytes_received: int = 0
    bytes_sent: int = 0

    # Set once the connection has been torn down
    close_reason: Optional[str] = None

    # Internal state (not shown in repr for cleaner logs)
    fd: int = field(default=-1, repr=False)
    slot: Optional[int] = field(default=None, repr=False)
    handler: Optional[HandlerGenerator] = field(default=None, repr=False)
    close_requested: bool = field(default=False, repr=False)
    buffer: Optional[bytearray] = field(default=None, repr=False)
    read_ahead: bytearray = field(default_factory=bytearray, repr=False)
    scan_offset: int = field(default=0, repr=False)

    def __post_init__(self):
        # The descriptor is captured once; after close() fileno() turns
        # into -1 and we still need the old value to match readiness sets.
        if self.fd < 0:
            self.fd = self.socket.fileno()
        self.socket.setblocking(False)
        self.handle = ConnectionHandle(self)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def label(self) -> str:
        """Log prefix in the form [address]:port."""
        return f"[{self.peer_address}]:{self.peer_port}"

    @property
    def is_closed(self) -> bool:
        return self.status is ConnectionStatus.CLOSED

    @property
    def age(self) -> float:
        """Connection age in seconds."""
        return time.monotonic() - self.created_at

    @property
    def idle_time(self) -> float:
        """Seconds since the last successful receive or send."""
        return time.monotonic() - self.last_activity

    def touch(self):
        self.last_activity = time.monotonic()

    # =========================================================================
    # PENDING REQUEST
    # =========================================================================

    def begin(self, request: IORequest):
        """
        Make `request` the connection's single pending request.

        Any dedicated buffer left over from the previous request is
        released first. The read-ahead buffer is NOT touched: bytes
        already received belong to the stream, not to a request.
        """
        self.release_buffer()
        self.request = request
        self.bytes_done = 0
        if isinstance(request, Write):
            self.status = ConnectionStatus.WRITING
        else:
            self.status = ConnectionStatus.READING

    def clear_request(self):
        """Drop the pending request once it has been satisfied."""
        self.request = None
        self.bytes_done = 0
        self.release_buffer()
        if not self.is_closed:
            self.status = ConnectionStatus.WAITING

    def release_buffer(self):
        self.buffer = None

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def close(self, reason: str) -> bool:
        """
        Release the socket and the handler, in that order.

        Safe to call any number of times; only the first call does any
        work. Removing the connection from the registry is the caller's
        job (the registry owns membership, not the record).

        Returns:
            True if this call closed the connection, False if it was
            already closed.
        """
        if self.is_closed:
            return False

        self.status = ConnectionStatus.CLOSED
        self.close_reason = reason

        try:
            self.socket.close()
        except OSError:
            pass  # Already gone, nothing left to release

        handler, self.handler = self.handler, None
        if handler is not None:
            # Raises GeneratorExit at the suspension point so the handler's
            # finally blocks run. A handler that misbehaves while exiting
            # must not take the dispatch loop down with it.
            try:
                handler.close()
            except Exception:
                logger.exception(f"{self.label} Handler raised while closing")

        self.request = None
        self.bytes_done = 0
        self.release_buffer()
        self.read_ahead.clear()
        self.scan_offset = 0
        return True


class ConnectionHandle:
    """
    The object a handler receives as its only argument.

    Each I/O method builds a request for the handler to yield; calling it
    without yielding the result does nothing.

        def handler(conn):
            size = yield conn.receive_line()
            body = yield conn.receive(int(size))
            yield conn.send(body.upper())
    """

    __slots__ = ("_conn",)

    def __init__(self, conn: Connection):
        self._conn = conn

    def __repr__(self) -> str:
        return f"<ConnectionHandle {self._conn.id} {self._conn.label}>"

    @property
    def id(self) -> str:
        return self._conn.id

    @property
    def peer_address(self) -> str:
        return self._conn.peer_address

    @property
    def peer_port(self) -> str:
        return self._conn.peer_port

    @property
    def closed(self) -> bool:
        return self._conn.is_closed or self._conn.close_requested

    def receive(self, count: int = 0) -> ReadExact:
        """Request exactly `count` bytes, or whatever is available if 0."""
        return ReadExact(count)

    def receive_line(self, max_hint: int = 0) -> ReadLine:
        """Request the next newline-terminated line."""
        return ReadLine(max_hint)

    def send(self, data: Union[bytes, bytearray, memoryview, str]) -> Write:
        """Request that `data` be sent in full. Strings are UTF-8 encoded."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        elif isinstance(data, (bytearray, memoryview)):
            data = bytes(data)
        elif not isinstance(data, bytes):
            raise TypeError(
                f"send() expects bytes or str, got {type(data).__name__}"
            )
        return Write(data)

    def close(self):
        """
        Ask for this connection to be torn down.

        Takes effect the next time the handler yields or returns; a request
        yielded after close() is never performed.
        """
        self._conn.close_requested = True
