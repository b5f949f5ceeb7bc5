"""
=============================================================================
SERVER ERRORS
=============================================================================

Exception types raised by the dispatcher core.

=============================================================================
ERROR TAXONOMY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   FATAL (stops the whole server)                                    │
    │   ├── MultiplexerError   select() itself failed                     │
    │   └── OSError from bind  raised straight from SocketServer.open()  │
    │                                                                      │
    │   PER-CONNECTION (tears down one connection, server keeps going)   │
    │   ├── ConnectionLost     recv/send returned 0 or failed             │
    │   │   └── LineTooLong    a line grew past max_line_length           │
    │   └── HandlerError       handler broke the yield protocol          │
    │                                                                      │
    │   NOT ERRORS AT ALL                                                 │
    │   └── partial reads, partial writes, incomplete lines              │
    │       (the request just stays pending for the next poll)           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""


class ServerError(Exception):
    """Base class for all coroserver errors."""


class MultiplexerError(ServerError):
    """
    Readiness polling failed.

    This is the one error the dispatch loop cannot recover from: without
    select() there is no way to know which connection to service next.
    """


class ConnectionLost(ServerError):
    """
    The peer closed the connection or the socket failed.

    Raised by the framing engine when recv() returns 0 bytes, when send()
    accepts 0 bytes, or when either raises an OSError that is not just
    "try again later".
    """

    def __init__(self, message: str, reason: str = "io-error"):
        super().__init__(message)
        self.reason = reason


class LineTooLong(ConnectionLost):
    """A line read grew past the configured maximum without a terminator."""

    def __init__(self, length: int, limit: int):
        super().__init__(
            f"Line exceeds {limit} bytes ({length} buffered without newline)",
            reason="line-too-long",
        )
        self.length = length
        self.limit = limit


class HandlerError(ServerError):
    """A handler yielded something that is not an I/O request."""
