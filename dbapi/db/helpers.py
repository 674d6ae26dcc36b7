"""
Shared DB helper utilities.

These wrappers ensure:
    - one accepted query shape across backends
    - predictable row→dict mapping
    - structured error handling

Every function here is blocking and takes a raw DB-API connection; the
clients run them on their executor threads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..errors import QueryFailed


# ----------------------------------------------------------------------
# Query shape
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Query:
    """
    A command with positional parameter values.

    The placeholder style is the driver's own (``?`` for SQLite, ``%s`` for
    MySQL); values are passed through to the driver unmodified.
    """

    text: str
    values: Sequence[Any] = field(default_factory=tuple)


QueryLike = Union[str, Query, Mapping[str, Any]]


def normalize_query(query: Any) -> Tuple[str, Optional[Sequence[Any]]]:
    """
    Split an accepted query value into ``(text, values)``.

    Accepted shapes:
        - "SELECT 1"
        - {"text": "SELECT ?", "values": [1]}
        - any object with ``text`` and ``values`` attributes (e.g. Query)

    Raises
    ------
    TypeError
        For any other shape.
    """
    if isinstance(query, str):
        return query, None

    if isinstance(query, Mapping):
        text = query.get("text")
        values = query.get("values")
    elif hasattr(query, "text") and hasattr(query, "values"):
        text = query.text
        values = query.values
    else:
        raise TypeError(
            f"Query must be a string or have 'text' and 'values', got {type(query).__name__}"
        )

    if not isinstance(text, str):
        raise TypeError(f"Query text must be a string, got {type(text).__name__}")
    if isinstance(values, (str, bytes)):
        raise TypeError("Query values must be a sequence of parameters, not a string")
    return text, values


# ----------------------------------------------------------------------
# Execution helpers
# ----------------------------------------------------------------------

def safe_execute(conn: Any, query: str, params: Optional[Sequence[Any]] = None):
    """
    Execute a single SQL statement safely.
    Returns the raw cursor.

    Parameters
    ----------
    conn:
        DB-API compatible connection object (sqlite3, pymysql, etc.).
    query:
        SQL string with placeholders.
    params:
        Optional parameter sequence. When None the statement is executed
        without parameter binding.

    Raises
    ------
    QueryFailed
        Wrapped execution error with context.
    """
    try:
        cur = conn.cursor()
    except Exception as e:
        raise QueryFailed(
            f"DB cursor failed: {e} | Query: {query!r}",
            query=query,
            values=params,
        ) from e

    try:
        if params is None:
            cur.execute(query)
        else:
            cur.execute(query, tuple(params))
    except Exception as e:
        _close_quietly(cur)
        raise QueryFailed(
            f"DB execute failed: {e} | Query: {query!r} | Params: {params!r}",
            query=query,
            values=params,
        ) from e
    return cur


def safe_fetch_all(conn: Any, query: str, params: Optional[Sequence[Any]] = None) -> List[Any]:
    """
    Execute a query and fetch all rows.

    Returns
    -------
    list
        Backend-specific row records (e.g., sqlite3.Row), in result order.
    """
    cur = safe_execute(conn, query, params)
    try:
        # Statements without a result set have no description.
        if cur.description is None:
            return []
        return list(cur.fetchall())
    finally:
        _close_quietly(cur)


def safe_fetch_one(conn: Any, query: str, params: Optional[Sequence[Any]] = None):
    """
    Execute a query and fetch one row.

    Returns
    -------
    Any
        Backend-specific row object or None.
    """
    cur = safe_execute(conn, query, params)
    try:
        if cur.description is None:
            return None
        return cur.fetchone()
    finally:
        _close_quietly(cur)


def safe_run(conn: Any, query: str, params: Optional[Sequence[Any]] = None) -> None:
    """
    Execute a statement and discard any result rows.
    """
    cur = safe_execute(conn, query, params)
    _close_quietly(cur)


# ----------------------------------------------------------------------
# Row mapping
# ----------------------------------------------------------------------

def row_to_dict(row: Any) -> Dict[str, Any]:
    """
    Convert sqlite3.Row or a pymysql DictCursor row to a plain Python dict.

    This normalizes row outputs across backends.
    """
    if row is None:
        return {}

    # sqlite3.Row, dict rows, etc.
    if hasattr(row, "keys"):
        return {k: row[k] for k in row.keys()}

    # Fallback: treat as a tuple-like sequence
    return dict(enumerate(row))


def _close_quietly(cur: Any) -> None:
    try:
        cur.close()
    except Exception:
        pass


__all__ = [
    "Query",
    "QueryLike",
    "normalize_query",
    "safe_execute",
    "safe_fetch_all",
    "safe_fetch_one",
    "safe_run",
    "row_to_dict",
]
