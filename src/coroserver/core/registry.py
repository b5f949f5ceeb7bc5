"""
=============================================================================
CONNECTION REGISTRY
=============================================================================

The registry is the set of live connections the dispatch loop polls.

=============================================================================
SLOTS INSTEAD OF LINKS
=============================================================================

Connections live in a growable list of slots. Removing one leaves a
hole (None) in its slot instead of shifting everything after it:

    slots:  [ conn A ][  None  ][ conn C ][ conn D ]
                          ▲
                          └── B was removed; C and D keep their index

That is what makes it safe to tear down the connection you are currently
looking at while iterating:

    for conn in registry:          # walking slot 2 (C)
        registry.remove(conn)      # slot 2 becomes None
                                   # iteration continues at slot 3 (D)

Freed slots are only recycled once no iteration is in progress. A
connection inserted mid-pass always goes to the end, past the range the
current pass walks, so it is first seen on the next pass.

=============================================================================
"""

from typing import Iterator, List, Optional

from .connection import Connection


class ConnectionRegistry:
    """
    Index-stable collection of live connections.

    Usage:
        registry = ConnectionRegistry()
        registry.insert(conn)

        for conn in registry:
            if done(conn):
                registry.remove(conn)   # safe mid-iteration

        registry.remove(conn)           # idempotent
    """

    def __init__(self):
        self._slots: List[Optional[Connection]] = []
        self._free: List[int] = []
        self._pending_free: List[int] = []
        self._count = 0
        self._iterating = 0

    def __len__(self) -> int:
        """Number of live connections."""
        return self._count

    def __contains__(self, conn: Connection) -> bool:
        slot = conn.slot
        return (
            slot is not None
            and slot < len(self._slots)
            and self._slots[slot] is conn
        )

    def insert(self, conn: Connection) -> int:
        """
        Add a newly accepted connection.

        Returns:
            The slot index assigned to the connection.
        """
        if conn in self:
            raise ValueError(f"Connection {conn.id} is already registered")

        if self._free and not self._iterating:
            slot = self._free.pop()
            self._slots[slot] = conn
        else:
            slot = len(self._slots)
            self._slots.append(conn)

        conn.slot = slot
        self._count += 1
        return slot

    def remove(self, conn: Connection) -> bool:
        """
        Remove a connection. Removing one that is not registered is a no-op.

        Returns:
            True if the connection was removed by this call.
        """
        if conn not in self:
            return False

        slot = conn.slot
        self._slots[slot] = None
        conn.slot = None
        self._count -= 1

        if self._iterating:
            self._pending_free.append(slot)
        else:
            self._free.append(slot)
        return True

    def __iter__(self) -> Iterator[Connection]:
        """
        Yield live connections in slot order.

        The slot count is fixed when iteration starts, and each slot is
        re-read as it is reached, so removals during the pass are skipped
        over and nothing is visited twice.
        """
        self._iterating += 1
        try:
            for slot in range(len(self._slots)):
                conn = self._slots[slot]
                if conn is not None:
                    yield conn
        finally:
            self._iterating -= 1
            if not self._iterating:
                self._compact()

    def snapshot(self) -> List[Connection]:
        """A plain list of the live connections, in slot order."""
        return [conn for conn in self._slots if conn is not None]

    def _compact(self):
        """Recycle freed slots and trim trailing holes."""
        self._free.extend(self._pending_free)
        self._pending_free.clear()

        while self._slots and self._slots[-1] is None:
            self._slots.pop()

        # Anything past the end was just trimmed off
        limit = len(self._slots)
        self._free = sorted(
            {slot for slot in self._free if slot < limit}, reverse=True
        )
