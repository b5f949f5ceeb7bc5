"""
=============================================================================
LISTENING SOCKET
=============================================================================

This module owns the server's listening socket: creating it, binding it,
accepting from it, and closing it. The dispatch loop never blocks on it;
the listener is simply one more descriptor in the readiness sets.

=============================================================================
DUAL-STACK LISTENING
=============================================================================

With an IPv6 host ("::" by default) the socket is created as AF_INET6
with IPV6_V6ONLY switched off, so IPv4 clients can connect too. The
kernel presents them as IPv4-mapped IPv6 addresses:

    IPv4 client 192.0.2.7  ──►  accept() reports  ::ffff:192.0.2.7

format_peer() turns that back into the plain dotted form for handlers
and logs. An IPv4 host ("127.0.0.1", "0.0.0.0") gets a plain AF_INET
socket.

=============================================================================
SIGNAL HANDLING FOR GRACEFUL SHUTDOWN
=============================================================================

SIGINT (Ctrl+C) and SIGTERM (docker stop, systemd, kill) are caught and
turned into a shutdown request, so the dispatch loop finishes its current
iteration and tears every connection down properly. Python only lets the
main thread install signal handlers; when the server runs on another
thread (as in the test suite) this step is skipped.

=============================================================================
"""

import ipaddress
import logging
import signal
import socket
import threading
from typing import Callable, Optional, Tuple

from ..config import ServerConfig


logger = logging.getLogger(__name__)


def format_peer(address: tuple) -> Tuple[str, str]:
    """
    Render an accept() address as (ip, port) strings.

    IPv4-mapped IPv6 addresses lose their ::ffff: prefix.

        >>> format_peer(("::ffff:10.0.0.5", 40123, 0, 0))
        ('10.0.0.5', '40123')
        >>> format_peer(("2001:db8::1", 443, 0, 0))
        ('2001:db8::1', '443')
    """
    host, port = address[0], address[1]

    try:
        ip = ipaddress.ip_address(host.split("%", 1)[0])
    except ValueError:
        return host, str(port)

    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        host = str(ip.ipv4_mapped)

    return host, str(port)


class SocketServer:
    """
    The listening socket and its lifecycle.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │    open()            socket() → setsockopt() → bind() → listen()    │
    │        │                                                             │
    │        ▼                                                             │
    │    accept()          one non-blocking accept, None if nothing       │
    │        │             was actually waiting                           │
    │        ▼                                                             │
    │    close()           restore signals, close the socket             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._original_handlers: dict = {}

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port).

        Reports the real port after open(), so port 0 in the config turns
        into whatever the OS assigned.
        """
        if self._socket is None:
            return (self.config.host, self.config.port)
        bound = self._socket.getsockname()
        return (bound[0], bound[1])

    def fileno(self) -> int:
        if self._socket is None:
            raise RuntimeError("Listening socket is not open")
        return self._socket.fileno()

    def _create_socket(self) -> socket.socket:
        """Create and configure the listening socket."""
        dual_stack = ":" in self.config.host
        family = socket.AF_INET6 if dual_stack else socket.AF_INET

        sock = socket.socket(family, socket.SOCK_STREAM)

        if dual_stack:
            # Accept IPv4 clients on the IPv6 socket as well
            try:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            except OSError as e:
                logger.warning(f"setsockopt(!IPV6_V6ONLY) failed: {e}")

        # Restarting right after a stop must not fail with "Address already in use"
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        except OSError as e:
            logger.warning(f"setsockopt(SO_REUSEADDR) failed: {e}")

        sock.setblocking(False)
        return sock

    def open(self):
        """
        Bind and listen.

        Raises:
            OSError: Bind failed (port in use, permission denied). Fatal.
        """
        sock = self._create_socket()

        try:
            sock.bind((self.config.host, self.config.port))
        except OSError as e:
            logger.error(f"bind({self.config.host}:{self.config.port}) failed: {e}")
            sock.close()
            raise

        sock.listen(self.config.backlog)
        self._socket = sock

        host, port = self.address
        logger.info(f"Listening on [{host}]:{port}")

    def accept(self) -> Optional[Tuple[socket.socket, tuple]]:
        """
        Accept one pending connection.

        Returns:
            (client_socket, address), or None when there was nothing to
            accept or accept() failed. A failed accept only affects the
            client that was being accepted.
        """
        try:
            return self._socket.accept()
        except (BlockingIOError, InterruptedError):
            return None
        except OSError as e:
            logger.warning(f"accept() error: {e}")
            return None

    def install_signal_handlers(self, on_shutdown: Callable[[], None]):
        """
        Route SIGINT/SIGTERM to `on_shutdown`.

        No-op outside the main thread, where Python forbids signal.signal().
        """
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received {signal_name}, initiating shutdown...")
            on_shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def restore_signal_handlers(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    def close(self):
        """Restore signal handlers and close the listener. Idempotent."""
        self.restore_signal_handlers()

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass  # Already closed
            self._socket = None
            logger.info("Listening socket closed")
