"""
Dispatcher for dbapi.

open() is the single entrypoint: it reads the scheme of a connection URL,
builds the backend options, and hands off to the matching backend client:

    sqlite:<path>                          -> SQLiteClient
    mysql://host[:port][/schema]           -> MySQLClient / PooledMySQLClient
    mariadb://host[:port][/schema]         -> same as mysql://

Any other scheme raises UnsupportedProtocol naming the scheme.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from .config import DEFAULT_MYSQL_PORT, ConnectionOptions, DBAPIConfig, load_config
from .db import MySQLClient, PooledMySQLClient, SQLiteClient, ensure_client
from .db.backend_base import Client
from .errors import InvalidURL, UnsupportedProtocol

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^([^:]*):")
_SQLITE_RE = re.compile(r"^sqlite:(.+)$", re.DOTALL)
_NETWORK_RE = re.compile(
    r"^(mysql|mariadb)://([a-zA-Z0-9\-.]+)(?::([0-9]+))?(?:/(.*))?$"
)


# ---------------------------------------------------------------------------
# URL parsing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParsedURL:
    """
    The parts of a connection URL a backend needs.

    ``path`` is set for sqlite: URLs; ``host``, ``port`` and ``database``
    for networked URLs (``database`` is None when no schema is given).
    """

    scheme: str
    path: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    database: Optional[str] = None


def parse_url(url: str) -> ParsedURL:
    """
    Split a connection URL into its parts.

    Raises
    ------
    UnsupportedProtocol
        If the scheme is not handled by any backend.
    InvalidURL
        If the URL has no scheme, or does not match its scheme's grammar.
    """
    match = _SCHEME_RE.match(url)
    if not match:
        raise InvalidURL(f"Connection URL has no scheme: {url!r}")

    scheme = match.group(1)
    if scheme not in BACKENDS:
        raise UnsupportedProtocol(scheme)

    if scheme == "sqlite":
        # Everything after the colon, verbatim: "sqlite::memory:" -> ":memory:"
        sqlite_match = _SQLITE_RE.match(url)
        if not sqlite_match:
            raise InvalidURL(f"SQLite URL has no path: {url!r}")
        return ParsedURL(scheme=scheme, path=sqlite_match.group(1))

    network_match = _NETWORK_RE.match(url)
    if not network_match:
        raise InvalidURL(
            f"Expected {scheme}://host[:port][/schema], got {url!r}"
        )
    _, host, port, database = network_match.groups()
    return ParsedURL(
        scheme=scheme,
        host=host,
        port=int(port) if port else DEFAULT_MYSQL_PORT,
        database=database or None,
    )


# ---------------------------------------------------------------------------
# Backend openers
# ---------------------------------------------------------------------------

async def _open_sqlite(parsed: ParsedURL, options: ConnectionOptions) -> Client:
    return await SQLiteClient.open(parsed.path, options.merge(path=parsed.path))


async def _open_mysql(parsed: ParsedURL, options: ConnectionOptions) -> Client:
    # URL-derived values win over the same-named options.
    options = replace(
        options,
        host=parsed.host,
        port=parsed.port,
        database=parsed.database,
    )
    if options.pool:
        return await PooledMySQLClient.open(options)
    return await MySQLClient.open(options)


BACKENDS: Dict[str, Callable[[ParsedURL, ConnectionOptions], Awaitable[Client]]] = {
    "sqlite": _open_sqlite,
    "mysql": _open_mysql,
    "mariadb": _open_mysql,
}


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------

async def open(
    url: str,
    options: Union[None, ConnectionOptions, Mapping[str, Any]] = None,
) -> Client:
    """
    Open a database from a connection URL.

    Parameters
    ----------
    url:
        "sqlite:/path/to/file.db", "sqlite::memory:",
        "mysql://host[:port][/schema]" or "mariadb://...".
    options:
        Mapping or ConnectionOptions. For networked URLs the host, port and
        schema parsed from the URL replace the same-named options. Keys
        that are not ConnectionOptions fields raise TypeError; driver
        arguments such as ``charset`` or ``ssl`` go in ``connect_args``,
        e.g. ``{"connect_args": {"charset": "utf8mb4"}}``.

    Returns
    -------
    Client
        SQLiteClient, MySQLClient, or PooledMySQLClient (``pool=True``).
    """
    parsed = parse_url(url)
    opts = ConnectionOptions.coerce(options)

    logger.debug("Opening %s database", parsed.scheme)
    client = await BACKENDS[parsed.scheme](parsed, opts)
    return ensure_client(client)


connect = open


async def open_from_config(config: Optional[DBAPIConfig] = None) -> Client:
    """
    Open the database described by ``config``, or by the environment when
    no config is given (see load_config()).
    """
    cfg = config or load_config()

    if cfg.enable_logging:
        logging.basicConfig(level=logging.INFO)
        logger.info("Opening database at %s", parse_url(cfg.url).scheme)

    return await open(cfg.url, cfg.options())


__all__ = [
    "open",
    "connect",
    "open_from_config",
    "parse_url",
    "ParsedURL",
    "BACKENDS",
]
