"""
=============================================================================
CONNECTION ACCESS LOG
=============================================================================

One summary line per connection, written when the connection is torn
down: who it was, how much traffic it carried, how long it lived, and
why it ended.

=============================================================================
LOGGER CONFIGURATION
=============================================================================

The summaries go to their own namespaced logger so they can be routed
separately from the diagnostic logs:

    logging.getLogger("coroserver.access").setLevel(logging.INFO)
    logging.getLogger("coroserver.access").addHandler(file_handler)

Two formats are supported:

    text   10.0.0.5:40123 - [17/Oct/2026:12:00:01 +0000] a1b2c3d4
           completed in=5 out=3 12.41ms

    json   {"connection_id": "a1b2c3d4", "peer_address": "10.0.0.5", ...}

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass

from .connection import Connection


logger = logging.getLogger("coroserver.access")


@dataclass
class ConnectionLog:
    """
    Structured log entry for one finished connection.

    reason is the teardown reason recorded on the connection
    (completed, handler-failed, peer-closed, io-error, idle-timeout,
    shutdown, line-too-long). Connections refused at the admission cap
    never get an entry.
    """
    connection_id: str
    peer_address: str
    peer_port: str
    bytes_received: int
    bytes_sent: int
    duration_ms: float
    reason: str
    timestamp: str

    @classmethod
    def from_connection(cls, conn: Connection) -> "ConnectionLog":
        return cls(
            connection_id=conn.id,
            peer_address=conn.peer_address,
            peer_port=conn.peer_port,
            bytes_received=conn.bytes_received,
            bytes_sent=conn.bytes_sent,
            duration_ms=conn.age * 1000,
            reason=conn.close_reason or "unknown",
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "peer_address": self.peer_address,
            "peer_port": self.peer_port,
            "bytes_received": self.bytes_received,
            "bytes_sent": self.bytes_sent,
            "duration_ms": round(self.duration_ms, 2),
            "reason": self.reason,
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        return (
            f"{self.peer_address}:{self.peer_port} - [{self.timestamp}] "
            f"{self.connection_id} {self.reason} "
            f"in={self.bytes_received} out={self.bytes_sent} "
            f"{self.duration_ms:.2f}ms"
        )


def log_connection(conn: Connection, log_format: str = "text") -> ConnectionLog:
    """Emit the access log entry for a torn-down connection."""
    entry = ConnectionLog.from_connection(conn)

    if log_format == "json":
        logger.info(json.dumps(entry.to_dict()))
    else:
        logger.info(entry.to_text())

    return entry
