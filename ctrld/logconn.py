"""A connection wrapper whose writes never fail."""

from __future__ import annotations

import socket


class LogConn:
    """Wraps a connected socket; writes ignore errors from the peer.

    The peer reading the log stream may finish and close the connection at
    any time, so write errors are swallowed rather than reported.
    """

    def __init__(self, conn: socket.socket) -> None:
        self.conn = conn

    def write(self, data: bytes) -> int:
        """Send data, ignoring any error, and report it all as written."""
        try:
            self.conn.sendall(data)
        except OSError:
            pass
        return len(data)

    def read(self, size: int) -> bytes:
        """Read up to size bytes from the underlying connection."""
        return self.conn.recv(size)

    def close(self) -> None:
        """Close the underlying connection."""
        self.conn.close()

    def __enter__(self) -> "LogConn":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()