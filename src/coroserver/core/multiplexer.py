"""
=============================================================================
READINESS MULTIPLEXER
=============================================================================

One thread, many sockets. Instead of blocking on any single socket, the
dispatch loop asks the OS "which of these can I use right now?" and only
touches the ones that are ready.

=============================================================================
BUILDING THE CANDIDATE SETS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   Descriptor            readable?    writable?    error?            │
    │   ──────────────────────────────────────────────────────────────    │
    │   listening socket      always       always       always            │
    │   conn (READING)        yes          -            yes               │
    │   conn (WRITING)        -            yes          yes               │
    │   conn (WAITING)        -            -            yes               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The listening socket goes into the read set so pending connections wake
us up. It is also in the write set, which lets a platform report an
immediate error on it.

=============================================================================
WHY select()?
=============================================================================

select() tops out around FD_SETSIZE (typically 1024) descriptors. The
server admits at most a few dozen connections, so that is plenty. The
Multiplexer base class is the seam: a poll/epoll/kqueue implementation
only has to return the same Readiness value.

=============================================================================
"""

import logging
import select
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional

from .connection import Connection, ConnectionStatus
from .errors import MultiplexerError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Readiness:
    """Which candidate descriptors came back ready, by category."""
    readable: FrozenSet[int] = field(default_factory=frozenset)
    writable: FrozenSet[int] = field(default_factory=frozenset)
    errored: FrozenSet[int] = field(default_factory=frozenset)

    def __bool__(self) -> bool:
        return bool(self.readable or self.writable or self.errored)

    def includes(self, fd: int) -> bool:
        """True if `fd` is ready in any category."""
        return fd in self.readable or fd in self.writable or fd in self.errored


@dataclass
class CandidateSets:
    """The three descriptor lists handed to the OS."""
    readable: list = field(default_factory=list)
    writable: list = field(default_factory=list)
    errored: list = field(default_factory=list)


def build_candidates(listener_fd: int, connections: Iterable[Connection]) -> CandidateSets:
    """
    Work out which descriptors to watch for what.

    Closed connections are skipped entirely; every other connection is
    always watched for errors.
    """
    candidates = CandidateSets(
        readable=[listener_fd],
        writable=[listener_fd],
        errored=[listener_fd],
    )

    for conn in connections:
        if conn.status is ConnectionStatus.CLOSED:
            continue
        if conn.status is ConnectionStatus.READING:
            candidates.readable.append(conn.fd)
        elif conn.status is ConnectionStatus.WRITING:
            candidates.writable.append(conn.fd)
        candidates.errored.append(conn.fd)

    return candidates


class Multiplexer(ABC):
    """Interface for readiness polling backends."""

    def poll(
        self,
        listener_fd: int,
        connections: Iterable[Connection],
        timeout: Optional[float] = None,
    ) -> Readiness:
        """
        Block until a candidate descriptor is ready.

        Args:
            listener_fd: The listening socket's descriptor.
            connections: Live connections, filtered by their status.
            timeout: Seconds to wait; None waits indefinitely. An elapsed
                     timeout returns an empty Readiness.

        Raises:
            MultiplexerError: The underlying mechanism failed. Fatal.
        """
        candidates = build_candidates(listener_fd, connections)
        logger.debug(
            f"Polling: {len(candidates.readable)} readable, "
            f"{len(candidates.writable)} writable, "
            f"{len(candidates.errored)} error candidates"
        )
        return self.wait(candidates, timeout)

    @abstractmethod
    def wait(self, candidates: CandidateSets, timeout: Optional[float]) -> Readiness:
        """Wait on prepared candidate sets."""


class SelectMultiplexer(Multiplexer):
    """Readiness polling over select.select()."""

    def wait(self, candidates: CandidateSets, timeout: Optional[float]) -> Readiness:
        while True:
            try:
                readable, writable, errored = select.select(
                    candidates.readable,
                    candidates.writable,
                    candidates.errored,
                    timeout,
                )
                break
            except InterruptedError:
                # Interrupted by a signal; wait again
                continue
            except (OSError, ValueError) as e:
                raise MultiplexerError(f"select() failed: {e}") from e

        return Readiness(
            readable=frozenset(readable),
            writable=frozenset(writable),
            errored=frozenset(errored),
        )
