"""
MySQL / MariaDB backend for dbapi.

Two clients share the same connect routine:

    - MySQLClient        : one connection for the client's whole lifetime
    - PooledMySQLClient  : checks a connection out of a ConnectionPool per
                           logical operation (connect(fn))

Connecting never selects a schema directly. When a schema name is
configured the connection:

    1. looks the schema up in information_schema,
    2. creates it if it is missing (the client's ``is_new`` flag),
    3. selects it with USE.

Only then is the client handed to the caller. The lookup-then-create step
is not atomic across concurrent opens of the same missing schema; the
loser's CREATE DATABASE fails with QueryFailed.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor
import inspect
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

try:
    import pymysql  # type: ignore
    import pymysql.cursors  # type: ignore
except ImportError:
    pymysql = None

from . import helpers
from .backend_base import Client, TransactionFn, run_in_transaction
from .connection import ConnectionPool
from ..config import ConnectionOptions
from ..errors import ConnectionFailed, TransactionInProgress, UsageError
from ..utils import promisify

logger = logging.getLogger(__name__)

SCHEMA_EXISTS_SQL = (
    "SELECT SCHEMA_NAME FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = %s"
)


# ----------------------------------------------------------------------
# Blocking operations (run on the client's executor)
# ----------------------------------------------------------------------

def quote_identifier(name: str) -> str:
    """Quote a schema name for use in CREATE DATABASE / USE."""
    return "`" + name.replace("`", "``") + "`"


def _open_connection(options: ConnectionOptions) -> Any:
    """Open a pymysql connection with dict rows and autocommit, no schema."""
    kwargs = options.driver_kwargs()
    try:
        return pymysql.connect(
            cursorclass=pymysql.cursors.DictCursor,
            autocommit=True,
            **kwargs,
        )
    except pymysql.err.MySQLError as e:
        raise ConnectionFailed(
            f"Could not connect to MySQL at {kwargs['host']}:{kwargs['port']}: {e}"
        ) from e


def _connect(options: ConnectionOptions) -> Tuple[Any, bool]:
    """
    Open a connection, then bootstrap and select ``options.database`` if one
    is set.

    Returns the connection and whether the schema was created.
    """
    conn = _open_connection(options)

    is_new = False
    if options.database:
        try:
            is_new = _bootstrap_schema(conn, options.database)
        except BaseException:
            _close_quietly(conn)
            raise
    return conn, is_new


def _bootstrap_schema(conn: Any, name: str) -> bool:
    row = helpers.safe_fetch_one(conn, SCHEMA_EXISTS_SQL, (name,))
    created = row is None
    if created:
        helpers.safe_run(conn, f"CREATE DATABASE {quote_identifier(name)}")
        logger.info("Created MySQL schema %r", name)
    helpers.safe_run(conn, f"USE {quote_identifier(name)}")
    return created


def _fetch_all(conn, query: str, params: Optional[Sequence[Any]]) -> List[Dict[str, Any]]:
    return [helpers.row_to_dict(r) for r in helpers.safe_fetch_all(conn, query, params)]


def _fetch_one(conn, query: str, params: Optional[Sequence[Any]]) -> Optional[Dict[str, Any]]:
    row = helpers.safe_fetch_one(conn, query, params)
    return helpers.row_to_dict(row) if row is not None else None


def _is_open(conn: Any) -> bool:
    return bool(getattr(conn, "open", True))


def _close_quietly(conn: Any) -> None:
    try:
        conn.close()
    except Exception:
        pass


def _require_driver() -> None:
    if pymysql is None:
        raise ConnectionFailed("PyMySQL is not installed; it is required for mysql:// URLs")


# ----------------------------------------------------------------------
# Single-connection client
# ----------------------------------------------------------------------

class MySQLClient(Client):
    """
    Client over one MySQL/MariaDB connection.

    NOTE: use ``await MySQLClient.open()`` (or dbapi.open) instead of the
    constructor.

    Attributes
    ----------
    conn:
        The underlying pymysql connection.
    is_new:
        True when open() created the configured schema.
    """

    def __init__(
        self,
        conn: Any,
        executor: ThreadPoolExecutor,
        *,
        is_new: bool = False,
        owns_connection: bool = True,
    ):
        self.conn = conn
        self.is_new = is_new
        self._executor = executor
        self._owns_connection = owns_connection
        self._in_transaction = False
        self._closed = False

        self._run = promisify(helpers.safe_run, executor=executor)
        self._get_one = promisify(_fetch_one, executor=executor)
        self._get_all = promisify(_fetch_all, executor=executor)

    @classmethod
    async def open(
        cls,
        options: Union[None, ConnectionOptions, Mapping[str, Any]] = None,
    ) -> "MySQLClient":
        """
        Connect, bootstrap the configured schema, and return a client.

        Raises
        ------
        ConnectionFailed
            If the server cannot be reached or rejects the credentials.
        QueryFailed
            If the schema cannot be looked up, created, or selected.
        """
        opts = ConnectionOptions.coerce(options)
        _require_driver()

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="dbapi-mysql")
        try:
            conn, is_new = await promisify(_connect, executor=executor)(opts)
        except BaseException:
            executor.shutdown(wait=False)
            raise

        logger.debug("Connected to MySQL %s:%s (schema=%r)", opts.host, opts.port, opts.database)
        return cls(conn, executor, is_new=is_new, owns_connection=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def run(self, query: helpers.QueryLike) -> None:
        text, values = helpers.normalize_query(query)
        self._check_open()
        await self._run(self.conn, text, values)

    async def get_one(self, query: helpers.QueryLike) -> Optional[Dict[str, Any]]:
        text, values = helpers.normalize_query(query)
        self._check_open()
        return await self._get_one(self.conn, text, values)

    async def get_all(self, query: helpers.QueryLike) -> List[Dict[str, Any]]:
        text, values = helpers.normalize_query(query)
        self._check_open()
        return await self._get_all(self.conn, text, values)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    def transaction(self, fn: TransactionFn):
        """
        Run ``fn(self)`` inside a server-side transaction.

        The transaction is scoped to the connection, so ``fn`` receives this
        same client. Commits and returns ``fn``'s result, or rolls back and
        re-raises the original exception.

        Raises TransactionInProgress immediately if a transaction is already
        open on this client.
        """
        self._check_open()
        if self._in_transaction:
            raise TransactionInProgress()
        return self._transaction(fn)

    async def _transaction(self, fn: TransactionFn) -> Any:
        if self._in_transaction:
            raise TransactionInProgress()
        self._in_transaction = True
        try:
            await self._run(self.conn, "BEGIN", None)
            logger.debug("Began MySQL transaction")
            return await run_in_transaction(
                fn,
                self,
                commit=lambda: self._run(self.conn, "COMMIT", None),
                rollback=lambda: self._run(self.conn, "ROLLBACK", None),
            )
        finally:
            self._in_transaction = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """
        Close the connection. If you do not call this, the socket stays open
        until the process exits. Safe to call twice.

        No-op for the transient clients handed out by
        PooledMySQLClient.connect(); the pool owns their connection.
        """
        if not self._owns_connection or self._closed:
            return
        self._closed = True
        try:
            await promisify(_close_quietly, executor=self._executor)(self.conn)
        finally:
            self._executor.shutdown(wait=False)
        logger.debug("Closed MySQL connection")

    def _detach(self) -> None:
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise UsageError("This connection has been closed or released")

    def __repr__(self) -> str:
        return f"<MySQLClient is_new={self.is_new} closed={self._closed}>"


# ----------------------------------------------------------------------
# Pooled client
# ----------------------------------------------------------------------

class PooledMySQLClient(Client):
    """
    Client over a pool of MySQL/MariaDB connections.

    Each connect(fn) call checks out its own connection, so calls have no
    ordering relationship with each other. At most ``pool_size`` calls hold
    a connection at once; further calls wait for a free one. When a schema
    is configured, every checkout repeats the schema bootstrap before ``fn``
    sees the connection.

    get_all / get_one / run / transaction each run through connect().

    Attributes
    ----------
    pool:
        The ConnectionPool connections are checked out of.
    is_new:
        True when open() created the configured schema.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        executor: ThreadPoolExecutor,
        options: ConnectionOptions,
        *,
        is_new: bool = False,
    ):
        self.pool = pool
        self.options = options
        self.is_new = is_new
        self._executor = executor
        self._slots = asyncio.Semaphore(options.pool_size)
        self._active = 0
        self._closed = False

        self._checkout = promisify(pool, "get", executor=executor)
        self._release = promisify(pool, "release", executor=executor)
        self._bootstrap = promisify(_bootstrap_schema, executor=executor)

    @classmethod
    async def open(
        cls,
        options: Union[None, ConnectionOptions, Mapping[str, Any]] = None,
    ) -> "PooledMySQLClient":
        """
        Create the pool and open its first connection eagerly, so connection
        and schema errors surface here rather than on first use.
        """
        opts = ConnectionOptions.coerce(options)
        _require_driver()
        if opts.pool_size < 1:
            raise ValueError(f"pool_size must be at least 1, got {opts.pool_size}")

        executor = ThreadPoolExecutor(
            max_workers=opts.pool_size,
            thread_name_prefix="dbapi-mysql-pool",
        )
        try:
            conn, is_new = await promisify(_connect, executor=executor)(opts)
        except BaseException:
            executor.shutdown(wait=False)
            raise

        pool = ConnectionPool(
            lambda: _open_connection(opts),
            max_idle=opts.pool_size,
            is_open=_is_open,
        )
        pool.release(conn)

        logger.debug(
            "Opened MySQL pool %s:%s (schema=%r, size=%d)",
            opts.host, opts.port, opts.database, opts.pool_size,
        )
        return cls(pool, executor, opts, is_new=is_new)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def connect(self, fn: TransactionFn) -> Any:
        """
        Check out one connection, run ``fn`` with a transient MySQLClient
        around it, and release the connection whatever the outcome.

        The transient client must not be used after ``fn`` finishes. Its
        ``is_new`` reports whether this checkout's bootstrap created the
        schema.
        """
        self._check_open()
        self._active += 1
        try:
            async with self._slots:
                return await self._use_connection(fn)
        finally:
            self._active -= 1
            if self._closed and not self._active:
                self._executor.shutdown(wait=False)

    async def _use_connection(self, fn: TransactionFn) -> Any:
        conn = await self._checkout()
        client = None
        failed = True
        try:
            is_new = False
            if self.options.database:
                is_new = await self._bootstrap(conn, self.options.database)
            client = MySQLClient(
                conn,
                self._executor,
                is_new=is_new,
                owns_connection=False,
            )
            result = fn(client)
            if inspect.isawaitable(result):
                result = await result
            failed = False
            return result
        finally:
            if client is not None:
                client._detach()
            await self._release(conn, failed)

    # ------------------------------------------------------------------
    # Common contract
    # ------------------------------------------------------------------

    async def run(self, query: helpers.QueryLike) -> None:
        await self.connect(lambda client: client.run(query))

    async def get_one(self, query: helpers.QueryLike) -> Optional[Dict[str, Any]]:
        return await self.connect(lambda client: client.get_one(query))

    async def get_all(self, query: helpers.QueryLike) -> List[Dict[str, Any]]:
        return await self.connect(lambda client: client.get_all(query))

    def transaction(self, fn: TransactionFn):
        """
        Run ``fn`` in a transaction on one checked-out connection.
        """
        self._check_open()
        return self.connect(lambda client: client.transaction(fn))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """
        Close idle connections and stop accepting checkouts. Safe to call
        twice.

        connect() calls already in flight finish normally; their connections
        are closed on release, and the executor is shut down once the last
        of them returns.
        """
        if self._closed:
            return
        self._closed = True
        try:
            await promisify(self.pool, "close", executor=self._executor)()
        finally:
            if not self._active:
                self._executor.shutdown(wait=False)
        logger.debug("Closed MySQL pool")

    def _check_open(self) -> None:
        if self._closed:
            raise UsageError("This connection pool has been closed")

    def __repr__(self) -> str:
        return f"<PooledMySQLClient size={self.options.pool_size} is_new={self.is_new}>"


__all__ = [
    "MySQLClient",
    "PooledMySQLClient",
    "quote_identifier",
    "SCHEMA_EXISTS_SQL",
]
