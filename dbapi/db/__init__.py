"""
dbapi.db

Backend client layer for dbapi.

This package provides:

- The client contract shared by every backend:
      * Client
      * ClientLike
      * ensure_client

- Helper functions for query normalization, execution and row mapping:
      * Query
      * normalize_query
      * safe_execute
      * safe_fetch_all
      * safe_fetch_one
      * safe_run
      * row_to_dict

- Concrete backend clients:
      * SQLiteClient       (embedded, nested transactions)
      * MySQLClient        (networked, single connection)
      * PooledMySQLClient  (networked, pooled)

- The checkout/release pool used by the pooled client:
      * ConnectionPool
"""

from .backend_base import Client, ClientLike, ensure_client
from .connection import ConnectionPool
from .helpers import (
    Query,
    normalize_query,
    safe_execute,
    safe_fetch_all,
    safe_fetch_one,
    safe_run,
    row_to_dict,
)
from .mysql_backend import MySQLClient, PooledMySQLClient
from .sqlite_backend import SQLiteClient

__all__ = [
    # Contract
    "Client",
    "ClientLike",
    "ensure_client",

    # Helpers
    "Query",
    "normalize_query",
    "safe_execute",
    "safe_fetch_all",
    "safe_fetch_one",
    "safe_run",
    "row_to_dict",

    # Backends
    "SQLiteClient",
    "MySQLClient",
    "PooledMySQLClient",

    # Pool
    "ConnectionPool",
]
