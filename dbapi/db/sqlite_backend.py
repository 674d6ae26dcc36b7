"""
SQLite backend for dbapi.

Used for:
    - local development
    - tests
    - embedded, single-file databases

Implements the Client contract over one sqlite3 connection:
    - open(path, options)
    - get_all / get_one / run
    - transaction(fn) with nesting (BEGIN at the top level, SAVEPOINTs below)
    - close()

The connection is created on, and only ever used from, a private
single-thread executor, so operations run in the order they are issued.
"""

from __future__ import annotations

import asyncio
import contextlib
from concurrent.futures import ThreadPoolExecutor
import logging
import os
import sqlite3
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from . import helpers
from .backend_base import Client, TransactionFn, run_in_transaction
from ..config import ConnectionOptions
from ..errors import ConnectionFailed, TransactionClosed, TransactionsDisabled, UsageError
from ..utils import promisify

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


# ----------------------------------------------------------------------
# Blocking operations (run on the client's executor)
# ----------------------------------------------------------------------

def _connect(path: str) -> sqlite3.Connection:
    """
    Open a sqlite3 connection with dict-like rows.

    isolation_level=None leaves transaction control to explicit
    BEGIN/COMMIT statements. Foreign keys are enforced when supported.
    """
    conn = sqlite3.connect(path, isolation_level=None, uri=path.startswith("file:"))
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON;")
    except sqlite3.Error:
        pass

    return conn


def _fetch_all(conn, query: str, params: Optional[Sequence[Any]]) -> List[Dict[str, Any]]:
    return [helpers.row_to_dict(r) for r in helpers.safe_fetch_all(conn, query, params)]


def _fetch_one(conn, query: str, params: Optional[Sequence[Any]]) -> Optional[Dict[str, Any]]:
    row = helpers.safe_fetch_one(conn, query, params)
    return helpers.row_to_dict(row) if row is not None else None


def _rollback(conn, handle: "_TransactionHandle") -> None:
    if handle.savepoint is None:
        helpers.safe_run(conn, "ROLLBACK")
    else:
        helpers.safe_run(conn, f"ROLLBACK TO SAVEPOINT {handle.savepoint}")
        helpers.safe_run(conn, f"RELEASE SAVEPOINT {handle.savepoint}")


# ----------------------------------------------------------------------
# Transaction handles
# ----------------------------------------------------------------------

class _TransactionHandle:
    """
    One level of transaction state on a shared connection.

    depth 0 is the connection itself; depth 1 is a BEGIN/COMMIT transaction;
    deeper levels are savepoints. ``gate`` is held while a child transaction
    of this handle is open, and by every query issued through this handle,
    so queries on a parent wait until its open transaction has finished.
    """

    def __init__(self, conn: sqlite3.Connection, depth: int = 0):
        self.conn = conn
        self.depth = depth
        self.gate = asyncio.Lock()
        self.closed = False

    @property
    def savepoint(self) -> Optional[str]:
        return f"dbapi_sp_{self.depth}" if self.depth > 1 else None

    def child(self) -> "_TransactionHandle":
        return _TransactionHandle(self.conn, self.depth + 1)

    def begin_sql(self) -> str:
        if self.savepoint is None:
            return "BEGIN"
        return f"SAVEPOINT {self.savepoint}"

    def commit_sql(self) -> str:
        if self.savepoint is None:
            return "COMMIT"
        return f"RELEASE SAVEPOINT {self.savepoint}"


# ----------------------------------------------------------------------
# Client implementation
# ----------------------------------------------------------------------

class SQLiteClient(Client):
    """
    SQLite client.

    NOTE: use ``await SQLiteClient.open()`` (or dbapi.open) instead of the
    constructor. Transaction contexts are also SQLiteClient instances; they
    share the connection and executor of the client that began them.
    """

    def __init__(
        self,
        handle: _TransactionHandle,
        executor: ThreadPoolExecutor,
        *,
        transactions: bool = False,
        owns_connection: bool = False,
        path: Optional[str] = None,
    ):
        self._handle = handle
        self._executor = executor
        self._transactions = transactions
        self._owns_connection = owns_connection
        self.path = path

        self._run = promisify(helpers.safe_run, executor=executor)
        self._get_one = promisify(_fetch_one, executor=executor)
        self._get_all = promisify(_fetch_all, executor=executor)
        self._rollback = promisify(_rollback, executor=executor)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    @classmethod
    async def open(
        cls,
        path: str,
        options: Union[None, ConnectionOptions, Mapping[str, Any]] = None,
    ) -> "SQLiteClient":
        """
        Open (or create) the SQLite database at ``path``.

        ``path`` may be ":memory:". Pass ``transactions=True`` in ``options``
        to enable transaction() on the returned client.

        Raises
        ------
        ConnectionFailed
            If the path is a directory or sqlite3 cannot open it.
        """
        opts = ConnectionOptions.coerce(options)

        if path != MEMORY and os.path.isdir(path):
            raise ConnectionFailed(f"Path points to a directory, expected file: {path}")

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dbapi-sqlite")
        connect = promisify(_connect, executor=executor)
        try:
            conn = await connect(path)
        except sqlite3.Error as e:
            executor.shutdown(wait=False)
            raise ConnectionFailed(f"Could not open SQLite database {path!r}: {e}") from e
        except BaseException:
            executor.shutdown(wait=False)
            raise

        logger.debug("Opened SQLite database %r (transactions=%s)", path, opts.transactions)
        return cls(
            _TransactionHandle(conn),
            executor,
            transactions=opts.transactions,
            owns_connection=True,
            path=path,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def run(self, query: helpers.QueryLike) -> None:
        text, values = helpers.normalize_query(query)
        async with self._gate():
            await self._run(self._handle.conn, text, values)

    async def get_one(self, query: helpers.QueryLike) -> Optional[Dict[str, Any]]:
        text, values = helpers.normalize_query(query)
        async with self._gate():
            return await self._get_one(self._handle.conn, text, values)

    async def get_all(self, query: helpers.QueryLike) -> List[Dict[str, Any]]:
        text, values = helpers.normalize_query(query)
        async with self._gate():
            return await self._get_all(self._handle.conn, text, values)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def transactions_enabled(self) -> bool:
        return self._transactions

    @property
    def in_transaction(self) -> bool:
        """True for transaction contexts handed to transaction() callbacks."""
        return self._handle.depth > 0

    def transaction(self, fn: TransactionFn):
        """
        Run ``fn`` in a (possibly nested) transaction.

        ``fn`` receives a new SQLiteClient bound to the transaction and may
        be sync or async. Its result is returned after COMMIT. If ``fn`` or
        the commit fails, the transaction is rolled back and the original
        exception is re-raised.

        Raises TransactionsDisabled immediately (not when awaited) if the
        database was opened without ``transactions=True``.
        """
        if not self._transactions:
            raise TransactionsDisabled()
        self._check_usable()
        return self._transaction(fn)

    async def _transaction(self, fn: TransactionFn) -> Any:
        parent = self._handle
        async with parent.gate:
            self._check_usable()
            handle = parent.child()
            await self._run(handle.conn, handle.begin_sql(), None)
            logger.debug("Began SQLite transaction (depth=%d)", handle.depth)

            ctx = SQLiteClient(
                handle,
                self._executor,
                transactions=True,
                path=self.path,
            )

            async def commit():
                # Wait for any query still holding the context's gate.
                async with handle.gate:
                    await self._run(handle.conn, handle.commit_sql(), None)
                logger.debug("Committed SQLite transaction (depth=%d)", handle.depth)

            async def rollback():
                await self._rollback(handle.conn, handle)
                logger.debug("Rolled back SQLite transaction (depth=%d)", handle.depth)

            try:
                return await run_in_transaction(fn, ctx, commit=commit, rollback=rollback)
            finally:
                handle.closed = True

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """
        Close the connection and stop the executor. Safe to call twice.

        On a transaction context this is a no-op: the context does not own
        the connection.
        """
        if not self._owns_connection or self._handle.closed:
            return
        self._handle.closed = True
        try:
            await promisify(self._handle.conn.close, executor=self._executor)()
        finally:
            self._executor.shutdown(wait=False)
        logger.debug("Closed SQLite database %r", self.path)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _check_usable(self) -> None:
        if self._handle.closed:
            if self._handle.depth > 0:
                raise TransactionClosed()
            raise UsageError("This database has been closed")

    @contextlib.asynccontextmanager
    async def _gate(self):
        self._check_usable()
        async with self._handle.gate:
            self._check_usable()
            yield

    def __repr__(self) -> str:
        return f"<SQLiteClient path={self.path!r} depth={self._handle.depth}>"


__all__ = ["SQLiteClient", "MEMORY"]
