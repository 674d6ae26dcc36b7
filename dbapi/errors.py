"""
Error taxonomy for dbapi.

Every error raised by this package derives from DatabaseError:

    - ConnectionFailed     : open/connect failed (bad path, network, auth)
    - QueryFailed          : the backend rejected a query
    - UsageError           : the caller misused a client (raised immediately)
    - UnsupportedProtocol  : the dispatcher does not know the URL scheme
    - InvalidURL           : the URL scheme is known but the URL is malformed
    - CallbackError        : a callback-style operation reported a non-exception error

Driver exceptions are always chained (``raise ... from err``).
"""

from __future__ import annotations

from typing import Any, Optional, Sequence


class DatabaseError(Exception):
    """Base class for all dbapi errors."""


# ----------------------------------------------------------------------
# Runtime errors
# ----------------------------------------------------------------------

class ConnectionFailed(DatabaseError):
    """Raised when a backend connection cannot be opened."""


class QueryFailed(DatabaseError):
    """
    Raised when the backend rejects a query.

    Attributes
    ----------
    query:
        The SQL text that failed.
    values:
        The bound parameter values, if any.
    """

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        values: Optional[Sequence[Any]] = None,
    ):
        super().__init__(message)
        self.query = query
        self.values = values


class CallbackError(DatabaseError):
    """
    Raised when a callback-style operation reports an error value that is
    not an exception instance.
    """

    def __init__(self, error: Any):
        super().__init__(f"Operation failed: {error!r}")
        self.error = error


# ----------------------------------------------------------------------
# Usage errors
# ----------------------------------------------------------------------

class UsageError(DatabaseError, TypeError):
    """Raised synchronously when a client is used incorrectly."""


class TransactionsDisabled(UsageError):
    def __init__(self, msg: str = "Transactions are not enabled for this database"):
        super().__init__(msg)


class TransactionInProgress(UsageError):
    def __init__(self, msg: str = "A transaction is already in progress on this connection"):
        super().__init__(msg)


class TransactionClosed(UsageError):
    def __init__(self, msg: str = "This transaction has already been committed or rolled back"):
        super().__init__(msg)


# ----------------------------------------------------------------------
# Dispatcher errors
# ----------------------------------------------------------------------

class UnsupportedProtocol(DatabaseError, ValueError):
    """Raised when a connection URL uses a scheme no backend handles."""

    def __init__(self, protocol: str):
        super().__init__(f'Protocol "{protocol}" is not supported')
        self.protocol = protocol


class InvalidURL(DatabaseError, ValueError):
    """Raised when a connection URL does not match its scheme's grammar."""


__all__ = [
    "DatabaseError",
    "ConnectionFailed",
    "QueryFailed",
    "CallbackError",
    "UsageError",
    "TransactionsDisabled",
    "TransactionInProgress",
    "TransactionClosed",
    "UnsupportedProtocol",
    "InvalidURL",
]
