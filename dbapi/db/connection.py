"""
Connection pool for networked backends.

This file defines:
- ConnectionPool: a small stack of idle DB-API connections around a
  connect factory.

The pool does checkout and release only. How many connections may be out at
once is decided by the caller (the pooled client bounds it); queuing and
health checking beyond "is this connection still open" are left to the
driver. All methods are blocking and thread-safe; clients call them from
their executor threads.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

from ..errors import UsageError

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Stack of reusable DB-API connections.

    Parameters
    ----------
    factory:
        Zero-argument callable returning a new, ready-to-use connection.
    max_idle:
        Keep at most this many idle connections; extras are closed on
        release. None keeps all of them.
    is_open:
        Predicate telling whether a connection can still be used. Closed
        connections are dropped instead of being handed out again.
    """

    def __init__(
        self,
        factory: Callable[[], Any],
        *,
        max_idle: Optional[int] = None,
        is_open: Optional[Callable[[Any], bool]] = None,
    ):
        self.factory = factory
        self.max_idle = max_idle
        self._is_open = is_open or (lambda conn: True)
        self._idle: List[Any] = []
        self._lock = threading.Lock()
        self._closed = False
        self.created = 0

    # ------------------------------------------------------------------
    # Checkout / release
    # ------------------------------------------------------------------

    def get(self) -> Any:
        """
        Check out a connection: an idle one if available, otherwise a new
        one from the factory.
        """
        with self._lock:
            if self._closed:
                raise UsageError("This connection pool has been closed")
            while self._idle:
                conn = self._idle.pop()
                if self._is_open(conn):
                    return conn
                _close_quietly(conn)

        conn = self.factory()
        with self._lock:
            self.created += 1
        return conn

    def release(self, conn: Any, failed: bool = False) -> None:
        """
        Return a checked-out connection to the pool.

        failed:
            The work done on the connection raised. The connection is rolled
            back first; if that fails it is closed instead of reused.
        """
        if failed:
            try:
                conn.rollback()
            except Exception:
                logger.warning("Rollback on release failed; discarding connection", exc_info=True)
                _close_quietly(conn)
                return

        with self._lock:
            keep = (
                not self._closed
                and self._is_open(conn)
                and (self.max_idle is None or len(self._idle) < self.max_idle)
            )
            if keep:
                self._idle.append(conn)
                return

        _close_quietly(conn)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def idle(self) -> int:
        with self._lock:
            return len(self._idle)

    def close(self) -> None:
        """
        Close every idle connection and refuse further checkouts.
        Connections still checked out are closed when released.
        """
        with self._lock:
            self._closed = True
            idle, self._idle = self._idle, []
        for conn in idle:
            _close_quietly(conn)


def _close_quietly(conn: Any) -> None:
    try:
        conn.close()
    except Exception:
        # Allow double-close or backend errors w/out propagating
        pass


__all__ = ["ConnectionPool"]
