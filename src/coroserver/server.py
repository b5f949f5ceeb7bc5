"""
=============================================================================
COROUTINE SERVER (DISPATCH LOOP)
=============================================================================

This module ties everything together: the listening socket, the registry
of live connections, the readiness multiplexer, the framing engine and
the handler scheduler.

=============================================================================
ONE ITERATION OF THE DISPATCH LOOP
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   1. POLL        multiplexer: who is ready?                         │
    │        │                                                             │
    │        ▼                                                             │
    │   2. ACCEPT      listener ready → accept ONE connection             │
    │        │           ├── at the cap?  close it, never start a handler │
    │        │           └── otherwise   register + start its handler     │
    │        ▼                                                             │
    │   3. SERVICE     for each registered connection, in registry order: │
    │        │           framing engine does the recv()/send()            │
    │        │           request complete? → scheduler resumes handler    │
    │        │           handler done / failed / I/O error → tear down    │
    │        ▼                                                             │
    │   4. EXPIRE      idle deadline passed? → tear down                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Everything happens on one thread. Handlers only run between polls, one at
a time, and only until their next yield.

=============================================================================
TEARDOWN
=============================================================================

Every way a connection can end (handler returned, handler raised, peer
hung up, socket error, idle deadline, server shutdown) goes through
_teardown(), which:

    1. closes the socket
    2. closes the handler generator (its finally blocks run)
    3. removes the connection from the registry
    4. writes the access log line

Calling it twice for the same connection does nothing the second time.

=============================================================================
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from .config import ServerConfig
from .core import (
    BufferPolicy,
    Connection,
    ConnectionLost,
    ConnectionRegistry,
    ConnectionStatus,
    FramingEngine,
    Handler,
    HandlerScheduler,
    Multiplexer,
    MultiplexerError,
    Outcome,
    Readiness,
    SelectMultiplexer,
    SocketServer,
    format_peer,
    log_connection,
)


logger = logging.getLogger(__name__)


@dataclass
class ServerStats:
    """Running counters, mostly for tests and the shutdown summary."""
    accepted: int = 0
    rejected: int = 0
    completed: int = 0
    failed: int = 0
    dropped: int = 0
    active: int = 0


class CoroutineServer:
    """
    Single-threaded TCP server with one suspendable handler per connection.

    =========================================================================
    USAGE
    =========================================================================

        def shout(conn):
            while True:
                line = yield conn.receive_line()
                if not line:
                    return
                yield conn.send(line.upper() + b"\\n")

        server = CoroutineServer(shout, ServerConfig(port=7007))
        server.run()    # blocks until Ctrl+C / shutdown()

    =========================================================================
    """

    def __init__(
        self,
        handler: Handler,
        config: Optional[ServerConfig] = None,
        multiplexer: Optional[Multiplexer] = None,
    ):
        """
        Args:
            handler: Generator function run once per connection.
            config: Server configuration. Defaults are used if omitted.
            multiplexer: Readiness backend. Defaults to select().
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self.handler = handler

        # ─────────────────────────────────────────────────────────────────
        # CORE COMPONENTS
        # ─────────────────────────────────────────────────────────────────
        self._socket_server = SocketServer(self.config)
        self._registry = ConnectionRegistry()
        self._multiplexer = multiplexer or SelectMultiplexer()
        self._engine = FramingEngine(BufferPolicy(
            scratch_size=self.config.scratch_size,
            max_line_length=self.config.max_line_length,
        ))
        self._scheduler = HandlerScheduler(handler, self._engine)

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────
        self._running = False
        self._ready = threading.Event()
        self._stopped = threading.Event()
        self.stats = ServerStats()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self):
        """The bound (host, port); the real port once the listener is open."""
        return self._socket_server.address

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """
        Open the listener and run the dispatch loop (blocking).

        Returns after shutdown(). Bind failures and multiplexer failures
        are fatal and re-raised after every connection has been closed.
        """
        self._setup_logging()
        self.open()
        self._socket_server.install_signal_handlers(self.shutdown)

        logger.info("Starting event loop...")

        try:
            while self._running:
                self.run_once()
        except MultiplexerError as e:
            logger.critical(f"Dispatch loop stopped: {e}")
            raise
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self.close()

    def open(self):
        """Bind the listener. Split out of run() so tests can step the loop."""
        if self._socket_server.is_open:
            return
        self._stopped.clear()
        try:
            self._socket_server.open()
        except OSError:
            self._stopped.set()
            raise
        self._running = True
        self._ready.set()

    def shutdown(self):
        """
        Ask the dispatch loop to stop.

        Safe to call from a signal handler or another thread, any number of
        times. The loop notices within one poll interval.
        """
        if self._running:
            logger.info("Shutting down...")
        self._running = False

    def close(self):
        """Tear down every connection and close the listener. Idempotent."""
        self._running = False

        for conn in self._registry:
            self._teardown(conn, "shutdown")

        self._socket_server.close()
        self._ready.clear()
        self._stopped.set()

        logger.info(
            f"Server stopped: {self.stats.accepted} accepted, "
            f"{self.stats.rejected} rejected, {self.stats.completed} completed, "
            f"{self.stats.failed} failed, {self.stats.dropped} dropped"
        )

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the listener is bound. False on timeout."""
        return self._ready.wait(timeout)

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """Block until the server has shut down. False on timeout."""
        return self._stopped.wait(timeout)

    def _setup_logging(self):
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("coroserver").setLevel(level)

    # =========================================================================
    # DISPATCH LOOP
    # =========================================================================

    def run_once(self, timeout: Optional[float] = None) -> Readiness:
        """
        Run one iteration: poll, accept, service, expire.

        Args:
            timeout: Poll timeout override; defaults to the configured
                     poll interval (capped by the idle timeout).

        Returns:
            What the multiplexer reported ready.

        Raises:
            MultiplexerError: Polling failed. Fatal.
        """
        listener_fd = self._socket_server.fileno()
        readiness = self._multiplexer.poll(
            listener_fd,
            self._registry,
            self._poll_timeout() if timeout is None else timeout,
        )

        # The listener always goes first
        if listener_fd in readiness.readable or listener_fd in readiness.writable:
            self._accept()

        if readiness:
            for conn in self._registry:
                self._service(conn, readiness)

        self._expire_idle()
        return readiness

    def _poll_timeout(self) -> Optional[float]:
        interval = self.config.poll_interval
        idle = self.config.idle_timeout
        if idle is None:
            return interval
        if interval is None:
            return idle
        return min(interval, idle)

    def _accept(self):
        accepted = self._socket_server.accept()
        if accepted is None:
            return

        client_socket, address = accepted
        peer_address, peer_port = format_peer(address)

        # ─────────────────────────────────────────────────────────────────
        # ADMISSION CONTROL
        # ─────────────────────────────────────────────────────────────────
        if len(self._registry) >= self.config.max_connections:
            logger.warning(
                f"[{peer_address}]:{peer_port} Connection limit "
                f"({self.config.max_connections}) reached, rejecting"
            )
            client_socket.close()
            self.stats.rejected += 1
            return

        try:
            conn = Connection(
                socket=client_socket,
                address=address,
                peer_address=peer_address,
                peer_port=peer_port,
            )
        except OSError as e:
            logger.warning(f"[{peer_address}]:{peer_port} Could not set up connection: {e}")
            client_socket.close()
            return

        self._registry.insert(conn)
        self.stats.accepted += 1
        self.stats.active = len(self._registry)
        logger.info(f"{conn.label} Accepted connection {conn.id}")

        try:
            outcome = self._scheduler.start(conn)
        except ConnectionLost as e:
            self._drop(conn, e)
            return
        except Exception:
            self._fail(conn)
            return

        self._finish_step(conn, outcome)

    def _service(self, conn: Connection, readiness: Readiness):
        """Route one connection's readiness through framing and the scheduler."""
        fd = conn.fd
        readable = fd in readiness.readable and conn.status is ConnectionStatus.READING
        writable = fd in readiness.writable and conn.status is ConnectionStatus.WRITING

        if not (readable or writable):
            if fd in readiness.errored:
                logger.warning(f"{conn.label} Socket reported an exceptional condition")
                self.stats.dropped += 1
                self._teardown(conn, "io-error")
            return

        try:
            progress = self._engine.service(conn, readable, writable)
            if not progress.complete:
                return
            outcome = self._scheduler.resume(conn, progress.payload)
        except ConnectionLost as e:
            self._drop(conn, e)
            return
        except Exception:
            self._fail(conn)
            return

        self._finish_step(conn, outcome)

    def _finish_step(self, conn: Connection, outcome: Outcome):
        if outcome is Outcome.SUSPENDED:
            return
        if outcome is Outcome.COMPLETED:
            self.stats.completed += 1
            self._teardown(conn, "completed")
        else:
            self.stats.failed += 1
            self._teardown(conn, "handler-failed")

    def _fail(self, conn: Connection):
        """A request blew up outside the handler; only its connection pays."""
        logger.exception(f"{conn.label} Error while servicing handler request")
        self.stats.failed += 1
        self._teardown(conn, "handler-failed")

    def _drop(self, conn: Connection, error: ConnectionLost):
        if error.reason == "peer-closed":
            logger.info(str(error))
        else:
            logger.warning(str(error))
        self.stats.dropped += 1
        self._teardown(conn, error.reason)

    def _expire_idle(self):
        timeout = self.config.idle_timeout
        if timeout is None:
            return

        for conn in self._registry:
            idle = conn.idle_time
            if idle > timeout:
                logger.warning(f"{conn.label} Idle for {idle:.1f}s, closing")
                self.stats.dropped += 1
                self._teardown(conn, "idle-timeout")

    def _teardown(self, conn: Connection, reason: str):
        """Close, release and unregister a connection. Idempotent."""
        closed = conn.close(reason)
        self._registry.remove(conn)
        self.stats.active = len(self._registry)

        if closed:
            log_connection(conn, self.config.log_format)


def create_server(handler: Handler, config: Optional[ServerConfig] = None) -> CoroutineServer:
    """
    Create a server for `handler`.

        server = create_server(echo_lines, ServerConfig(port=7007))
        server.run()
    """
    return CoroutineServer(handler, config)
