"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the coroutine server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m coroserver --port 7007                           │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── CORO_PORT=7007 python -m coroserver                        │
    │                                                                      │
    │   3. The handler module's `port` attribute (port only)              │
    │                                                                      │
    │   4. Default values (in this dataclass)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Validation happens once, at startup. A bad value fails immediately with
a ValueError naming the field instead of surfacing later as a confusing
socket error.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for the coroutine server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog

    ADMISSION AND BUFFERING
    - max_connections, scratch_size, max_line_length

    DISPATCH LOOP
    - poll_interval, idle_timeout

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "::"
    """
    The address to bind to.
    - "::"        All interfaces, IPv6 and IPv4 (dual-stack)
    - "0.0.0.0"   All IPv4 interfaces only
    - "127.0.0.1" Localhost only
    """

    port: int = 8080
    """The port to listen on. 0 lets the OS pick one (tests)."""

    backlog: int = 10
    """Connections the kernel queues before accept() picks them up."""

    # ─────────────────────────────────────────────────────────────────────
    # ADMISSION AND BUFFERING
    # ─────────────────────────────────────────────────────────────────────

    max_connections: int = 30
    """
    Admission cap. Connections accepted beyond this are closed at once,
    without ever reaching a handler.
    """

    scratch_size: int = 4096
    """
    Reads up to this size go through a shared scratch buffer; larger
    fixed-size reads get a dedicated buffer for their lifetime.
    """

    max_line_length: int = 64 * 1024
    """Longest line (in bytes) buffered before the connection is dropped."""

    # ─────────────────────────────────────────────────────────────────────
    # DISPATCH LOOP
    # ─────────────────────────────────────────────────────────────────────

    poll_interval: Optional[float] = 1.0
    """
    Longest single wait in the readiness poll, in seconds. The loop checks
    for shutdown and idle connections between waits.
    None = wait until something is ready (shutdown only via a connection).
    """

    idle_timeout: Optional[float] = None
    """
    Seconds a connection may go without any successful receive or send
    before it is torn down. None = connections may idle forever.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """Per-connection access log format: 'text' or 'json'."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        CORO_HOST             Bind address (default: ::)
        CORO_PORT             Port (default: 8080)
        CORO_MAX_CONNECTIONS  Admission cap (default: 30)
        CORO_IDLE_TIMEOUT     Idle deadline in seconds (default: none)
        CORO_LOG_LEVEL        Logging level (default: INFO)
        CORO_LOG_FORMAT       Access log format (default: text)

        =====================================================================
        """
        idle_timeout = os.getenv("CORO_IDLE_TIMEOUT")
        return cls(
            host=os.getenv("CORO_HOST", "::"),
            port=int(os.getenv("CORO_PORT", "8080")),
            max_connections=int(os.getenv("CORO_MAX_CONNECTIONS", "30")),
            idle_timeout=float(idle_timeout) if idle_timeout else None,
            log_level=os.getenv("CORO_LOG_LEVEL", "INFO"),
            log_format=os.getenv("CORO_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """Validate configuration values, failing fast on the first bad one."""
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.backlog < 1:
            raise ValueError("backlog must be >= 1")

        if self.max_connections < 1:
            raise ValueError("max_connections must be >= 1")

        if self.scratch_size < 64:
            raise ValueError("scratch_size must be >= 64")

        if self.max_line_length < self.scratch_size:
            raise ValueError("max_line_length must be >= scratch_size")

        if self.poll_interval is not None and self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

        if self.idle_timeout is not None and self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(
                f"Invalid log_format: {self.log_format!r}. "
                f"Must be one of {', '.join(LOG_FORMATS)}."
            )
