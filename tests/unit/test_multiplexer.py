"""
Unit tests for readiness polling.
"""

import socket

import pytest

from coroserver.core import (
    MultiplexerError,
    ReadExact,
    Readiness,
    SelectMultiplexer,
    Write,
)
from coroserver.core.multiplexer import CandidateSets, build_candidates


LISTENER_FD = 3


class TestBuildCandidates:
    """Tests for sorting connections into candidate sets."""

    def test_listener_in_every_set(self):
        candidates = build_candidates(LISTENER_FD, [])

        assert candidates.readable == [LISTENER_FD]
        assert candidates.writable == [LISTENER_FD]
        assert candidates.errored == [LISTENER_FD]

    def test_connections_sorted_by_status(self, make_connection):
        reading, writing, waiting, closed = (make_connection() for _ in range(4))
        reading.begin(ReadExact(1))
        writing.begin(Write(b"x"))
        closed.close("completed")

        candidates = build_candidates(LISTENER_FD, [reading, writing, waiting, closed])

        assert candidates.readable == [LISTENER_FD, reading.fd]
        assert candidates.writable == [LISTENER_FD, writing.fd]
        assert candidates.errored == [LISTENER_FD, reading.fd, writing.fd, waiting.fd]


class TestReadiness:
    """Tests for the Readiness result."""

    def test_empty_is_false(self):
        assert not Readiness()

    def test_includes(self):
        readiness = Readiness(readable=frozenset({5}), errored=frozenset({7}))

        assert readiness
        assert readiness.includes(5)
        assert readiness.includes(7)
        assert not readiness.includes(6)


class TestSelectMultiplexer:
    """Tests for the select() backend on real sockets."""

    @pytest.fixture
    def pair(self):
        a, b = socket.socketpair()
        yield a, b
        a.close()
        b.close()

    def test_reports_readable(self, pair):
        a, b = pair
        b.sendall(b"ping")

        readiness = SelectMultiplexer().wait(
            CandidateSets(readable=[a.fileno()]), timeout=1.0
        )

        assert a.fileno() in readiness.readable

    def test_reports_writable(self, pair):
        a, _ = pair

        readiness = SelectMultiplexer().wait(
            CandidateSets(writable=[a.fileno()]), timeout=1.0
        )

        assert a.fileno() in readiness.writable

    def test_timeout_returns_empty(self, pair):
        a, _ = pair

        readiness = SelectMultiplexer().wait(
            CandidateSets(readable=[a.fileno()]), timeout=0.01
        )

        assert not readiness

    def test_invalid_descriptor_is_fatal(self):
        with pytest.raises(MultiplexerError):
            SelectMultiplexer().wait(CandidateSets(readable=[-1]), timeout=0)

    def test_poll_watches_listener(self, pair):
        a, b = pair
        b.sendall(b"x")

        readiness = SelectMultiplexer().poll(a.fileno(), [], timeout=1.0)

        assert a.fileno() in readiness.readable
