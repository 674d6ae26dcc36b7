"""
Client base interfaces for dbapi.

This module defines the contract every backend client satisfies, whatever
its connection or transaction model:

    await client.get_all(query)  -> list of dict rows
    await client.get_one(query)  -> dict row or None
    await client.run(query)      -> None
    await client.transaction(fn) -> whatever fn returns
    await client.close()         -> None

It is intentionally light-weight:

- It does NOT depend on any specific DB driver.
- It does NOT define a transaction context type. SQLite hands ``fn`` a new
  client per (nested) transaction; MySQL hands ``fn`` the client itself.

This file provides:
- Client: abstract base class
- ClientLike: structural protocol
- ensure_client: runtime validator
- run_in_transaction: the commit-or-rollback discipline both backends share
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import inspect
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

logger = logging.getLogger(__name__)

TransactionFn = Callable[[Any], Any]


# ---------------------------------------------------------------------------
# Abstract Base Client
# ---------------------------------------------------------------------------

class Client(ABC):
    """
    Abstract base class for a dbapi client.

    Concrete subclasses are created by their backend's ``open()``
    classmethod, never by calling the constructor directly.

    Clients are async context managers; leaving the block closes them.
    """

    @abstractmethod
    async def get_all(self, query: Any) -> List[Dict[str, Any]]:
        """
        Run ``query`` and return every row, in result order.
        An empty list when nothing matches.
        """
        raise NotImplementedError

    @abstractmethod
    async def get_one(self, query: Any) -> Optional[Dict[str, Any]]:
        """
        Run ``query`` and return the first row, or None when nothing matches.
        """
        raise NotImplementedError

    @abstractmethod
    async def run(self, query: Any) -> None:
        """
        Run ``query`` for its effects, discarding any rows.
        """
        raise NotImplementedError

    @abstractmethod
    def transaction(self, fn: TransactionFn) -> Awaitable[Any]:
        """
        Run ``fn`` inside a transaction and return its result.

        Usage errors are raised by this call itself, before anything is
        awaited.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Release the underlying connection or pool.
        """
        raise NotImplementedError

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False


# ---------------------------------------------------------------------------
# Structural Protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class ClientLike(Protocol):
    """
    Structural protocol for objects usable as a dbapi client.
    """

    def get_all(self, query: Any) -> Awaitable[Any]:
        ...

    def get_one(self, query: Any) -> Awaitable[Any]:
        ...

    def run(self, query: Any) -> Awaitable[Any]:
        ...

    def transaction(self, fn: TransactionFn) -> Awaitable[Any]:
        ...

    def close(self) -> Awaitable[Any]:
        ...


# ---------------------------------------------------------------------------
# Runtime Guard
# ---------------------------------------------------------------------------

def ensure_client(client: Any) -> ClientLike:
    """
    Validate that an object behaves like a dbapi client.

    Raises:
        TypeError if required attributes are missing.
    """
    if not isinstance(client, ClientLike):
        missing = [
            name
            for name in ("get_all", "get_one", "run", "transaction", "close")
            if not callable(getattr(client, name, None))
        ]
        raise TypeError(
            f"Invalid dbapi client {client!r}: missing attributes {missing}"
        )

    return client


# ---------------------------------------------------------------------------
# Transaction discipline
# ---------------------------------------------------------------------------

async def run_in_transaction(
    fn: TransactionFn,
    ctx: Any,
    *,
    commit: Callable[[], Awaitable[Any]],
    rollback: Callable[[], Awaitable[Any]],
) -> Any:
    """
    Await ``fn(ctx)`` inside an already-begun transaction, then commit.

    If ``fn`` or the commit fails, ``rollback`` is attempted and the original
    exception is re-raised. A failing rollback is logged and never replaces
    the original error.
    """
    try:
        result = fn(ctx)
        if inspect.isawaitable(result):
            result = await result
        await commit()
    except BaseException:
        try:
            await rollback()
        except Exception:
            logger.exception("Rollback failed; re-raising the original error")
        raise
    return result


__all__ = [
    "Client",
    "ClientLike",
    "ensure_client",
    "run_in_transaction",
    "TransactionFn",
]
