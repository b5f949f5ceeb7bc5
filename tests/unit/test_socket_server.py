"""
Unit tests for the listening socket and peer address formatting.
"""

import socket
import time

import pytest

from coroserver import ServerConfig
from coroserver.core import SocketServer, format_peer


class TestFormatPeer:
    """Tests for peer address formatting."""

    def test_ipv4(self):
        assert format_peer(("192.168.1.10", 5000)) == ("192.168.1.10", "5000")

    def test_ipv4_mapped_prefix_stripped(self):
        assert format_peer(("::ffff:10.0.0.5", 40123, 0, 0)) == ("10.0.0.5", "40123")

    def test_ipv6_unchanged(self):
        assert format_peer(("2001:db8::1", 443, 0, 0)) == ("2001:db8::1", "443")

    def test_non_ip_host_passed_through(self):
        assert format_peer(("localhost", 80)) == ("localhost", "80")


class TestSocketServer:
    """Tests for the listening socket."""

    def test_open_reports_assigned_port(self):
        server = SocketServer(ServerConfig(host="127.0.0.1", port=0))
        server.open()
        try:
            host, port = server.address
            assert host == "127.0.0.1"
            assert port > 0
            assert server.is_open
        finally:
            server.close()

        assert not server.is_open

    def test_accept_with_nothing_pending(self):
        server = SocketServer(ServerConfig(host="127.0.0.1", port=0))
        server.open()
        try:
            assert server.accept() is None
        finally:
            server.close()

    def test_accept_pending_client(self):
        server = SocketServer(ServerConfig(host="127.0.0.1", port=0))
        server.open()
        client = socket.create_connection(server.address, timeout=2.0)
        try:
            accepted = None
            for _ in range(200):
                accepted = server.accept()
                if accepted is not None:
                    break
                time.sleep(0.01)
            assert accepted is not None
            accepted[0].close()
        finally:
            client.close()
            server.close()

    def test_bind_failure_raises(self):
        first = SocketServer(ServerConfig(host="127.0.0.1", port=0))
        first.open()
        try:
            second = SocketServer(ServerConfig(host="127.0.0.1", port=first.address[1]))
            with pytest.raises(OSError):
                second.open()
            assert not second.is_open
        finally:
            first.close()

    def test_close_is_idempotent(self):
        server = SocketServer(ServerConfig(host="127.0.0.1", port=0))
        server.open()
        server.close()
        server.close()

    def test_fileno_requires_open(self):
        with pytest.raises(RuntimeError):
            SocketServer(ServerConfig()).fileno()
