"""
=============================================================================
COROSERVER - One Suspendable Handler Per TCP Connection, One Thread
=============================================================================

coroserver is a small event-driven TCP server. Every accepted connection
gets its own handler, written as a plain generator function, and a
single select() loop multiplexes all of them on one thread.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   client A ──┐                                                       │
    │   client B ──┼──► select() ──► framing engine ──► handler A, B, C   │
    │   client C ──┘       ▲               │                 │             │
    │                      │               │                 │             │
    │                      └── registry ◄──┴─── new request ◄┘             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Handlers read as straight-line code; the server suspends them at each
yield and resumes them only once the request is fully satisfied:

    def handler(conn):
        data = yield conn.receive(5)        # exactly 5 bytes
        line = yield conn.receive_line()    # up to "\\n", whitespace stripped
        yield conn.send(b"ok\\n")            # returns once every byte is out

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    coroserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m coroserver)
    ├── server.py            # CoroutineServer: the dispatch loop
    ├── config.py            # ServerConfig dataclass
    ├── core/                # Dispatcher components
    │   ├── connection.py    # Connection record, requests, handle
    │   ├── registry.py      # Live connection registry
    │   ├── multiplexer.py   # select()-based readiness polling
    │   ├── framing.py       # Partial reads/writes and line framing
    │   ├── scheduler.py     # Handler start/resume
    │   ├── socket_server.py # Listening socket, peer formatting, signals
    │   ├── access_log.py    # Per-connection summary log
    │   └── errors.py        # Exception types
    └── handlers/            # Handler loading and built-in handlers

=============================================================================
QUICK START
=============================================================================

    from coroserver import CoroutineServer, ServerConfig

    def shout(conn):
        while True:
            line = yield conn.receive_line()
            if not line:
                return
            yield conn.send(line.upper() + b"\\n")

    CoroutineServer(shout, ServerConfig(port=7007)).run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .server import CoroutineServer, ServerStats, create_server
from .core import ConnectionHandle, ReadExact, ReadLine, Write

__all__ = [
    "CoroutineServer",
    "ServerConfig",
    "ServerStats",
    "create_server",
    "ConnectionHandle",
    "ReadExact",
    "ReadLine",
    "Write",
    "__version__",
]
