"""
=============================================================================
BUFFERING AND FRAMING ENGINE
=============================================================================

The framing engine performs the actual recv()/send() calls for a ready
connection and decides whether its pending request is now satisfied.

=============================================================================
PARTIAL I/O NEVER REACHES THE HANDLER
=============================================================================

Sockets are non-blocking, so a single recv() returns whatever happens to
be in the kernel buffer and a single send() takes whatever fits. The
engine keeps per-connection progress between polls and only reports a
request COMPLETE once the handler can be given exactly what it asked for:

    Handler asks:  ReadExact(10)

    poll 1:  recv → "hel"          bytes_done = 3    PENDING
    poll 2:  recv → "lo wo"        bytes_done = 8    PENDING
    poll 3:  recv → "rl"           bytes_done = 10   COMPLETE("hello worl")

Same for writes:

    Handler asks:  Write("ok, see you\\n")  (12 bytes)

    poll 1:  send → 5 accepted     bytes_done = 5    PENDING
    poll 2:  send → 7 accepted     bytes_done = 12   COMPLETE(None)

=============================================================================
LINE FRAMING WITH A READ-AHEAD BUFFER
=============================================================================

Lines are received destructively into the connection's read-ahead buffer
and then searched for "\\n". Whatever follows the newline stays buffered
and is handed to the NEXT request first:

    stream:     "AB\\nCD"  ...later...  "EF\\n"

    ReadLine    read_ahead = "AB\\nCD"  → deliver "AB", keep "CD"
    ReadLine    read_ahead = "CD"       → no newline, PENDING
                read_ahead = "CDEF\\n"  → deliver "CDEF"

Only the bytes added since the last search are scanned (scan_offset), so
a long line arriving in many small pieces is not re-scanned from the
start on every poll.

=============================================================================
TWO-TIER BUFFERS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  count <= scratch_size    recv into the engine's shared scratch     │
    │                           buffer, copy out what arrived             │
    │                                                                      │
    │  count >  scratch_size    allocate a dedicated bytearray(count)     │
    │                           for this request, recv straight into it, │
    │                           drop it when the request completes        │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .connection import Connection, ReadExact, ReadLine, Write
from .errors import ConnectionLost, LineTooLong


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BufferPolicy:
    """
    Buffer sizing strategy.

    Attributes:
        scratch_size: Largest read served from the shared scratch buffer,
                      and the receive size for "whatever is available".
        max_line_length: Bytes a line may buffer without a newline before
                         the connection is dropped.
    """
    scratch_size: int = 4096
    max_line_length: int = 64 * 1024

    def __post_init__(self):
        if self.scratch_size < 1:
            raise ValueError("scratch_size must be >= 1")
        if self.max_line_length < self.scratch_size:
            raise ValueError("max_line_length must be >= scratch_size")

    def needs_dedicated_buffer(self, count: int) -> bool:
        return count > self.scratch_size


@dataclass(frozen=True)
class Progress:
    """Outcome of servicing a request: still pending, or done with a payload."""
    complete: bool
    payload: Optional[bytes] = None


PENDING = Progress(complete=False)


class FramingEngine:
    """
    Performs I/O for ready connections.

    Usage:
        engine = FramingEngine(BufferPolicy(scratch_size=4096))

        progress = engine.service(conn, readable=True, writable=False)
        if progress.complete:
            scheduler.resume(conn, progress.payload)

    Raises ConnectionLost from any method that touches the socket when
    the peer has gone away or the socket failed.
    """

    def __init__(self, policy: Optional[BufferPolicy] = None):
        self.policy = policy or BufferPolicy()
        self._scratch = bytearray(self.policy.scratch_size)

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def service(self, conn: Connection, readable: bool, writable: bool) -> Progress:
        """
        Make progress on the pending request of a ready connection.

        Args:
            conn: The connection reported ready.
            readable: Its descriptor came back in the readable set.
            writable: Its descriptor came back in the writable set.

        Returns:
            PENDING, or a completed Progress (the request is then cleared).
        """
        request = conn.request

        if isinstance(request, Write):
            if not writable:
                return PENDING
            return self._write(conn, request)

        if not readable:
            return PENDING

        if isinstance(request, ReadLine):
            return self._read_line(conn, request)
        if isinstance(request, ReadExact):
            return self._read_exact(conn, request)

        return PENDING

    def settle(self, conn: Connection) -> Progress:
        """
        Complete the pending request without touching the socket, if possible.

        Called right after a handler issues a request: bytes left in the
        read-ahead buffer may already satisfy it, and the socket may never
        become readable again to tell us so.
        """
        request = conn.request

        if isinstance(request, ReadLine):
            return self._take_line(conn)
        if isinstance(request, ReadExact):
            return self._take_exact(conn, request)
        if isinstance(request, Write) and not request.data:
            return self._complete(conn, None)

        return PENDING

    # =========================================================================
    # READ EXACT / READ AVAILABLE
    # =========================================================================

    def _read_exact(self, conn: Connection, request: ReadExact) -> Progress:
        progress = self._take_exact(conn, request)
        if progress.complete:
            return progress

        count = request.count

        if self.policy.needs_dedicated_buffer(count):
            if conn.buffer is None:
                conn.buffer = bytearray(count)
            got = self._recv_into(conn, memoryview(conn.buffer)[conn.bytes_done:count])
            if got is None:
                return PENDING
            conn.bytes_done += got
        else:
            want = count - conn.bytes_done if count else self.policy.scratch_size
            view = memoryview(self._scratch)[:want]
            got = self._recv_into(conn, view)
            if got is None:
                return PENDING
            if count == 0 or (conn.bytes_done == 0 and got == count):
                # Satisfied by this one receive; skip the accumulation copy
                return self._complete(conn, bytes(view[:got]))
            self._accumulate(conn, view[:got])

        if conn.bytes_done < count:
            return PENDING
        return self._complete(conn, bytes(conn.buffer[:count]))

    def _take_exact(self, conn: Connection, request: ReadExact) -> Progress:
        """Serve a read from the read-ahead buffer."""
        ahead = conn.read_ahead
        if not ahead:
            return PENDING

        count = request.count
        if count == 0:
            payload = bytes(ahead)
            ahead.clear()
            conn.scan_offset = 0
            return self._complete(conn, payload)

        need = count - conn.bytes_done
        chunk = bytes(ahead[:need])
        del ahead[:need]
        conn.scan_offset = max(0, conn.scan_offset - len(chunk))

        if self.policy.needs_dedicated_buffer(count):
            if conn.buffer is None:
                conn.buffer = bytearray(count)
            conn.buffer[conn.bytes_done:conn.bytes_done + len(chunk)] = chunk
            conn.bytes_done += len(chunk)
        else:
            self._accumulate(conn, chunk)

        if conn.bytes_done < count:
            return PENDING
        return self._complete(conn, bytes(conn.buffer[:count]))

    def _accumulate(self, conn: Connection, data):
        """Append to a small request's private accumulation buffer."""
        if conn.buffer is None:
            conn.buffer = bytearray()
        conn.buffer += data
        conn.bytes_done += len(data)

    # =========================================================================
    # READ LINE
    # =========================================================================

    def _read_line(self, conn: Connection, request: ReadLine) -> Progress:
        progress = self._take_line(conn)
        if progress.complete:
            return progress

        # Never receive more than it takes to prove the line is too long
        room = self.policy.max_line_length + 1 - len(conn.read_ahead)
        size = min(max(self.policy.scratch_size, request.max_hint), room)
        if size > len(self._scratch):
            view = memoryview(bytearray(size))
        else:
            view = memoryview(self._scratch)[:size]

        got = self._recv_into(conn, view)
        if got is None:
            return PENDING

        conn.read_ahead += view[:got]
        return self._take_line(conn)

    def _take_line(self, conn: Connection) -> Progress:
        """Cut the first complete line out of the read-ahead buffer."""
        ahead = conn.read_ahead
        newline = ahead.find(b"\n", conn.scan_offset)

        if newline < 0:
            conn.scan_offset = len(ahead)
            if len(ahead) > self.policy.max_line_length:
                raise LineTooLong(len(ahead), self.policy.max_line_length)
            return PENDING

        if newline > self.policy.max_line_length:
            raise LineTooLong(newline, self.policy.max_line_length)

        line = bytes(ahead[:newline + 1])
        del ahead[:newline + 1]
        conn.scan_offset = 0

        return self._complete(conn, line.rstrip())

    # =========================================================================
    # WRITE
    # =========================================================================

    def _write(self, conn: Connection, request: Write) -> Progress:
        data = request.data
        remaining = len(data) - conn.bytes_done

        if remaining <= 0:
            return self._complete(conn, None)

        try:
            sent = conn.socket.send(memoryview(data)[conn.bytes_done:])
        except (BlockingIOError, InterruptedError):
            return PENDING
        except OSError as e:
            raise ConnectionLost(
                f"{conn.label} send error: {e} (wanted {remaining} bytes)"
            ) from e

        if sent <= 0:
            raise ConnectionLost(f"{conn.label} send accepted no bytes")

        conn.bytes_done += sent
        conn.bytes_sent += sent
        conn.touch()
        logger.debug(f"{conn.label} sent {sent} bytes")

        if conn.bytes_done < len(data):
            return PENDING
        return self._complete(conn, None)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _recv_into(self, conn: Connection, view: memoryview) -> Optional[int]:
        """
        One non-blocking receive.

        Returns:
            Bytes received, or None if the socket had nothing after all.

        Raises:
            ConnectionLost: Peer closed (0 bytes) or the socket failed.
        """
        try:
            got = conn.socket.recv_into(view)
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            raise ConnectionLost(f"{conn.label} error reading from socket: {e}") from e

        if got == 0:
            raise ConnectionLost(f"{conn.label} peer closed the connection", reason="peer-closed")

        conn.bytes_received += got
        conn.touch()
        logger.debug(f"{conn.label} read {got} bytes")
        return got

    def _complete(self, conn: Connection, payload: Optional[bytes]) -> Progress:
        conn.clear_request()
        return Progress(complete=True, payload=payload)
