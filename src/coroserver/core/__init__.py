"""
=============================================================================
CORE DISPATCHER COMPONENTS
=============================================================================

The low-level machinery behind CoroutineServer, leaves first:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         CONNECTION                                   │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Per-connection state: socket, peer, status, pending request      │
    │  • ConnectionHandle: what a handler sees and yields requests from   │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          REGISTRY                                    │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Live connections in stable slots                                 │
    │  • Safe removal of the connection currently being iterated          │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                         MULTIPLEXER                                  │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Builds read/write/error candidate sets from connection status    │
    │  • Blocks in select() until something is ready                      │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                       FRAMING ENGINE                                 │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Non-blocking recv()/send() with progress kept between polls      │
    │  • Exact-size reads, line reads, full writes                        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SCHEDULER                                    │
    │  ─────────────────────────────────────────────────────────────────  │
    │  • Starts each handler generator and resumes it with I/O results    │
    │  • Reports SUSPENDED / COMPLETED / FAILED                           │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .errors import (
    ServerError,
    MultiplexerError,
    ConnectionLost,
    LineTooLong,
    HandlerError,
)
from .connection import (
    Connection,
    ConnectionHandle,
    ConnectionStatus,
    IORequest,
    ReadExact,
    ReadLine,
    Write,
)
from .registry import ConnectionRegistry
from .multiplexer import Multiplexer, SelectMultiplexer, Readiness
from .framing import BufferPolicy, FramingEngine, Progress, PENDING
from .scheduler import Handler, HandlerScheduler, Outcome
from .socket_server import SocketServer, format_peer
from .access_log import ConnectionLog, log_connection

__all__ = [
    # Errors
    "ServerError",
    "MultiplexerError",
    "ConnectionLost",
    "LineTooLong",
    "HandlerError",
    # Connection state and handler-facing API
    "Connection",
    "ConnectionHandle",
    "ConnectionStatus",
    "IORequest",
    "ReadExact",
    "ReadLine",
    "Write",
    # Dispatcher components
    "ConnectionRegistry",
    "Multiplexer",
    "SelectMultiplexer",
    "Readiness",
    "BufferPolicy",
    "FramingEngine",
    "Progress",
    "PENDING",
    "Handler",
    "HandlerScheduler",
    "Outcome",
    "SocketServer",
    "format_peer",
    # Logging
    "ConnectionLog",
    "log_connection",
]
