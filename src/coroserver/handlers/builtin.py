"""
Built-in handlers.

Small, self-contained examples of the handler protocol, and what the CLI
runs when no handler is named.
"""

import logging


logger = logging.getLogger(__name__)


def echo_lines(conn):
    """Echo each line back until an empty line or "quit"."""
    while True:
        line = yield conn.receive_line()
        if not line or line.lower() == b"quit":
            yield conn.send(b"bye\n")
            return
        yield conn.send(line + b"\n")


def hello_ok(conn):
    """Read five bytes, answer "ok", hang up."""
    data = yield conn.receive(5)
    logger.debug(f"[{conn.peer_address}]:{conn.peer_port} got {data!r}")
    yield conn.send(b"ok\n")


def greeter(conn):
    """
    Greet the peer by address, then echo raw chunks until it disconnects.

    The loop has no exit of its own: the connection ends when the peer
    closes (the pending receive fails and the server tears it down).
    """
    yield conn.send(f"hello [{conn.peer_address}]:{conn.peer_port}\n")
    while True:
        chunk = yield conn.receive()
        yield conn.send(chunk)
