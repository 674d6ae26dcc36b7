"""
dbapi

One asynchronous connection/query API over SQLite and MySQL/MariaDB,
selected from a connection URL:

    db = await dbapi.open("sqlite::memory:", {"transactions": True})
    await db.run("CREATE TABLE t (x INTEGER)")
    await db.run({"text": "INSERT INTO t VALUES (?)", "values": [1]})
    rows = await db.get_all("SELECT x FROM t")
    await db.close()

Submodules include:
    - core    (open, connect, parse_url)
    - config  (ConnectionOptions, DBAPIConfig, load_config)
    - errors
    - utils   (promisify)
    - db      (backend clients)
"""

from .config import ConnectionOptions, DBAPIConfig, load_config
from .core import connect, open, open_from_config, parse_url
from .db import (
    Client,
    MySQLClient,
    PooledMySQLClient,
    Query,
    SQLiteClient,
)
from .errors import (
    CallbackError,
    ConnectionFailed,
    DatabaseError,
    InvalidURL,
    QueryFailed,
    TransactionClosed,
    TransactionInProgress,
    TransactionsDisabled,
    UnsupportedProtocol,
    UsageError,
)
from .utils import promisify

__version__ = "0.1.0"

__all__ = [
    # Entrypoints
    "open",
    "connect",
    "open_from_config",
    "parse_url",

    # Config
    "ConnectionOptions",
    "DBAPIConfig",
    "load_config",

    # Clients
    "Client",
    "SQLiteClient",
    "MySQLClient",
    "PooledMySQLClient",
    "Query",

    # Errors
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

    # Utilities
    "promisify",
]
