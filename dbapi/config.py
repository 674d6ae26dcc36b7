"""
Configuration for dbapi.

This module centralizes:

    - ConnectionOptions : the immutable option record handed to open()
    - DBAPIConfig       : process-level settings (URL, credentials, flags)
    - load_config()     : load DBAPIConfig from environment variables

Backends derive their own subsets from ConnectionOptions; nothing in here
talks to a database.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields, replace
import os
from typing import Any, Dict, Mapping, Optional, Union

DEFAULT_MYSQL_PORT = 3306
DEFAULT_POOL_SIZE = 10


# ----------------------------------------------------------------------
# Connection options
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionOptions:
    """
    Options accepted by dbapi.open() and the backend openers.

    Attributes
    ----------
    host, port:
        Networked backends only. URL-derived values override these.

    user, password:
        Credentials for networked backends.

    database:
        Schema name selected after connecting (MySQL). Created on first
        connect if it does not exist.

    pool:
        MySQL only. Use the pooled client instead of a single connection.

    pool_size:
        Maximum number of connections checked out at once by a pooled client.

    transactions:
        SQLite only. Enable transaction support (including nesting).

    path:
        SQLite database file, or ":memory:".

    connect_timeout:
        Seconds to wait for a networked connect; passed to the driver.

    connect_args:
        Extra keyword arguments forwarded verbatim to the driver's connect().
    """

    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None

    pool: bool = False
    pool_size: int = DEFAULT_POOL_SIZE

    transactions: bool = False
    path: Optional[str] = None

    connect_timeout: Optional[float] = None
    connect_args: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def coerce(
        cls,
        options: Union[None, "ConnectionOptions", Mapping[str, Any]],
    ) -> "ConnectionOptions":
        """
        Build ConnectionOptions from None, a mapping, or an instance.

        Raises
        ------
        TypeError
            If a mapping contains keys that are not option names.
        """
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(options) - known)
        if unknown:
            raise TypeError(
                f"Unknown connection options: {unknown}; "
                "pass driver-specific arguments in connect_args"
            )
        return cls(**dict(options))

    def merge(self, **overrides: Any) -> "ConnectionOptions":
        """
        Return a copy with ``overrides`` applied. None values are ignored so
        callers can pass optional parts straight through.
        """
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def driver_kwargs(self) -> Dict[str, Any]:
        """
        Keyword arguments for a networked driver's connect(), excluding the
        schema name (selected separately after connecting).
        """
        kwargs: Dict[str, Any] = {
            "host": self.host or "localhost",
            "port": self.port or DEFAULT_MYSQL_PORT,
        }
        if self.user is not None:
            kwargs["user"] = self.user
        if self.password is not None:
            kwargs["password"] = self.password
        if self.connect_timeout is not None:
            kwargs["connect_timeout"] = self.connect_timeout
        kwargs.update(self.connect_args)
        return kwargs

    def __repr__(self) -> str:
        # Never echo credentials into logs.
        values = asdict(self)
        if values.get("password") is not None:
            values["password"] = "***"
        body = ", ".join(f"{k}={v!r}" for k, v in values.items())
        return f"ConnectionOptions({body})"


# ----------------------------------------------------------------------
# Process-level config
# ----------------------------------------------------------------------

@dataclass
class DBAPIConfig:
    """
    Canonical process-level configuration.

    Attributes
    ----------
    url:
        Connection URL, e.g. "sqlite:./app.db" or "mysql://db.local/app".

    user, password:
        Credentials for networked backends.

    pool:
        Use the pooled MySQL client.

    pool_size:
        Maximum simultaneous checkouts for the pooled client.

    transactions:
        Enable SQLite transactions.

    enable_logging:
        Configure basic INFO logging when opening from this config.
    """

    url: str = "sqlite::memory:"
    user: Optional[str] = None
    password: Optional[str] = None

    pool: bool = False
    pool_size: int = DEFAULT_POOL_SIZE
    transactions: bool = False

    enable_logging: bool = False

    def options(self) -> ConnectionOptions:
        return ConnectionOptions(
            user=self.user,
            password=self.password,
            pool=self.pool,
            pool_size=self.pool_size,
            transactions=self.transactions,
        )


def load_config() -> DBAPIConfig:
    """
    Load DBAPIConfig from environment variables, falling back to defaults.

    Recognized variables:
        DBAPI_URL              (connection URL)
        DBAPI_USER             (networked backends)
        DBAPI_PASSWORD         (networked backends)
        DBAPI_POOL             ("true" / "false" / "1" / "0")
        DBAPI_POOL_SIZE        (integer)
        DBAPI_TRANSACTIONS     ("true" / "false" / "1" / "0")
        DBAPI_ENABLE_LOGGING   ("true" / "false" / "1" / "0")

    Returns
    -------
    DBAPIConfig
    """

    def _env_flag(name: str, default: bool) -> bool:
        val = os.getenv(name)
        if val is None:
            return default
        return val.strip().lower() in ("1", "true", "yes", "on")

    def _env_int(name: str, default: int) -> int:
        val = os.getenv(name)
        if val is None or not val.strip():
            return default
        try:
            return int(val)
        except ValueError:
            raise ValueError(f"{name} must be an integer, got {val!r}") from None

    return DBAPIConfig(
        url=os.getenv("DBAPI_URL", "sqlite::memory:"),
        user=os.getenv("DBAPI_USER"),
        password=os.getenv("DBAPI_PASSWORD"),

        pool=_env_flag("DBAPI_POOL", default=False),
        pool_size=_env_int("DBAPI_POOL_SIZE", DEFAULT_POOL_SIZE),
        transactions=_env_flag("DBAPI_TRANSACTIONS", default=False),

        enable_logging=_env_flag(
            "DBAPI_ENABLE_LOGGING",
            default=False
        ),
    )


__all__ = [
    "ConnectionOptions",
    "DBAPIConfig",
    "load_config",
    "DEFAULT_MYSQL_PORT",
    "DEFAULT_POOL_SIZE",
]
