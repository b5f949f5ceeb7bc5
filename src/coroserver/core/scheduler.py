"""
=============================================================================
HANDLER SCHEDULER
=============================================================================

The scheduler owns the suspend/resume contract between the dispatch loop
and each connection's handler.

=============================================================================
GENERATORS AS SUSPENDABLE HANDLERS
=============================================================================

A handler is a generator function. Calling it creates a paused
generator; every `yield` hands an I/O request back to us and freezes the
handler right there until we send() the result back in:

    ┌──────────────────────────────┐          ┌──────────────────────────┐
    │ handler(conn)                │          │ scheduler                │
    ├──────────────────────────────┤          ├──────────────────────────┤
    │                              │ ◄─────── │ start: gen.send(None)    │
    │ data = yield conn.receive(5) │ ───────► │ ReadExact(5) → READING   │
    │                              │          │   ...polls go by...      │
    │                              │ ◄─────── │ resume: gen.send(b"hi!!")│
    │ yield conn.send(b"ok\\n")     │ ───────► │ Write(b"ok\\n") → WRITING │
    │                              │          │   ...polls go by...      │
    │                              │ ◄─────── │ resume: gen.send(None)   │
    │ return                       │ ───────► │ StopIteration → COMPLETED│
    └──────────────────────────────┘          └──────────────────────────┘

Only one handler runs at a time and it runs until its next yield, so
there is no locking anywhere: the generator frame IS the saved
continuation.

=============================================================================
THREE OUTCOMES
=============================================================================

    SUSPENDED   handler yielded a request that is not yet satisfied
    COMPLETED   handler returned (or asked for its connection to close)
    FAILED      an exception escaped the handler

COMPLETED and FAILED both mean the dispatch loop must tear the
connection down. A failure never escapes this module.

=============================================================================
"""

import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional

from .connection import Connection, ConnectionHandle, ReadExact, ReadLine, Write
from .errors import HandlerError
from .framing import FramingEngine


logger = logging.getLogger(__name__)

Handler = Callable[[ConnectionHandle], Any]


class Outcome(Enum):
    """What a handler did after being started or resumed."""
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def needs_teardown(self) -> bool:
        return self is not Outcome.SUSPENDED


class HandlerScheduler:
    """
    Starts and resumes per-connection handlers.

    Usage:
        scheduler = HandlerScheduler(echo_lines, FramingEngine())

        outcome = scheduler.start(conn)          # on accept
        ...
        outcome = scheduler.resume(conn, data)   # when a request completes

    After every step that leaves the handler suspended, the new request is
    checked against already-buffered data (FramingEngine.settle) and the
    handler is resumed again straight away if that satisfies it.

    ConnectionLost from the framing engine (a buffered line that is already
    too long) propagates to the caller like any other I/O failure.
    """

    def __init__(self, handler: Handler, engine: FramingEngine):
        self._handler = handler
        self._engine = engine

    def start(self, conn: Connection) -> Outcome:
        """
        Create the handler for a fresh connection and run it to its first yield.

        The handler receives the connection's handle as its only argument.
        """
        try:
            gen = self._handler(conn.handle)
        except Exception:
            logger.exception(f"{conn.label} Handler failed to start")
            return Outcome.FAILED

        if not inspect.isgenerator(gen):
            logger.info(f"{conn.label} Handler returned without suspending")
            return Outcome.COMPLETED

        conn.handler = gen
        return self._advance(conn, None)

    def resume(self, conn: Connection, result: Optional[bytes]) -> Outcome:
        """
        Continue a suspended handler with the result of its last request.

        Args:
            conn: Connection whose request just completed.
            result: Bytes for a read, None for a finished write.
        """
        if conn.handler is None or conn.is_closed:
            raise RuntimeError(f"Connection {conn.id} has no suspended handler")
        if conn.request is not None:
            raise RuntimeError(f"Connection {conn.id} still has a pending request")

        return self._advance(conn, result)

    def _advance(self, conn: Connection, value: Optional[bytes]) -> Outcome:
        gen = conn.handler
        error: Optional[BaseException] = None

        while True:
            # ─────────────────────────────────────────────────────────────
            # RUN THE HANDLER UNTIL IT YIELDS OR STOPS
            # ─────────────────────────────────────────────────────────────
            try:
                if error is not None:
                    request = gen.throw(error)
                else:
                    request = gen.send(value)
            except StopIteration:
                logger.info(f"{conn.label} Handler finished")
                return Outcome.COMPLETED
            except Exception:
                logger.exception(f"{conn.label} Handler error")
                return Outcome.FAILED

            error = None

            if conn.close_requested:
                logger.debug(f"{conn.label} Handler requested close")
                return Outcome.COMPLETED

            # ─────────────────────────────────────────────────────────────
            # VALIDATE THE REQUEST
            # ─────────────────────────────────────────────────────────────
            # A bad yield is raised back into the handler at the yield
            if not isinstance(request, (ReadExact, ReadLine, Write)):
                error = HandlerError(
                    f"Handler yielded {type(request).__name__}; "
                    f"expected conn.receive(), conn.receive_line() or conn.send()"
                )
                continue

            # ─────────────────────────────────────────────────────────────
            # REGISTER IT, AND SHORT-CIRCUIT IF ALREADY BUFFERED
            # ─────────────────────────────────────────────────────────────
            conn.begin(request)
            progress = self._engine.settle(conn)
            if not progress.complete:
                return Outcome.SUSPENDED

            value = progress.payload
