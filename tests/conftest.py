"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from collections import deque
from typing import Callable, Generator, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from coroserver import CoroutineServer, ServerConfig
from coroserver.core import BufferPolicy, Connection, FramingEngine


class FakeSocket:
    """
    Scripted stand-in for a non-blocking client socket.

    Incoming data is queued with feed(); each recv_into() consumes at most
    one queued chunk, so every chunk behaves like a separate arrival. An
    empty chunk means the peer closed. Exceptions in the queue are raised.

    send() accepts everything unless a limit or a script says otherwise.
    """

    def __init__(self, fd: int = 100):
        self._fd = fd
        self.incoming = deque()
        self.sent = bytearray()
        self.send_limit: Optional[int] = None
        self.send_script = deque()
        self.recv_sizes = []
        self.closed = False
        self.blocking = True

    def fileno(self) -> int:
        return -1 if self.closed else self._fd

    def setblocking(self, flag: bool):
        self.blocking = flag

    def feed(self, *chunks):
        self.incoming.extend(chunks)

    def recv_into(self, buffer, nbytes: int = 0) -> int:
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        if not self.incoming:
            raise BlockingIOError(11, "Resource temporarily unavailable")

        item = self.incoming[0]
        if isinstance(item, BaseException):
            self.incoming.popleft()
            raise item
        if item == b"":
            return 0

        self.recv_sizes.append(len(buffer))
        n = min(len(buffer), len(item))
        buffer[:n] = item[:n]
        if n < len(item):
            self.incoming[0] = item[n:]
        else:
            self.incoming.popleft()
        return n

    def send(self, data) -> int:
        if self.closed:
            raise OSError(9, "Bad file descriptor")

        limit = self.send_limit
        if self.send_script:
            item = self.send_script.popleft()
            if isinstance(item, BaseException):
                raise item
            limit = item

        data = bytes(data)
        n = len(data) if limit is None else min(limit, len(data))
        self.sent += data[:n]
        return n

    def close(self):
        self.closed = True


@pytest.fixture
def fake_socket() -> FakeSocket:
    return FakeSocket()


@pytest.fixture
def make_connection() -> Callable[..., Connection]:
    """Factory for connections over fake sockets."""
    counter = iter(range(100, 10000))

    def factory(sock: Optional[FakeSocket] = None, port: str = "40000") -> Connection:
        sock = sock or FakeSocket(fd=next(counter))
        return Connection(
            socket=sock,
            address=("127.0.0.1", int(port)),
            peer_address="127.0.0.1",
            peer_port=port,
        )

    return factory


@pytest.fixture
def engine() -> FramingEngine:
    """Framing engine with a small scratch buffer so large-read paths are easy to hit."""
    return FramingEngine(BufferPolicy(scratch_size=16, max_line_length=64))


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        poll_interval=0.05,
        log_level="WARNING",
    )


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll `predicate` until it is true or `timeout` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestServer:
    """Test server helper that runs in a background thread."""

    __test__ = False  # not a test class, despite the name

    def __init__(self, server: CoroutineServer):
        self.server = server
        self._thread: threading.Thread = None
        self.error: Optional[BaseException] = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    def _run(self):
        try:
            self.server.run()
        except BaseException as e:
            self.error = e

    def start(self):
        """Start server in background thread."""
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def connect(self) -> socket.socket:
        sock = socket.create_connection(("127.0.0.1", self.port), timeout=5.0)
        return sock

    def stop(self):
        """Stop the server."""
        self.server.shutdown()

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def start_server(config: ServerConfig) -> Generator[Callable[..., TestServer], None, None]:
    """Start a server for a handler; every server started is stopped afterwards."""
    started = []

    def starter(handler, **overrides) -> TestServer:
        for key, value in overrides.items():
            setattr(config, key, value)
        test_srv = TestServer(CoroutineServer(handler, config))
        test_srv.start()
        started.append(test_srv)
        return test_srv

    yield starter

    for test_srv in started:
        test_srv.stop()
