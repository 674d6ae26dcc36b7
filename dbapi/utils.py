"""
Callback-to-awaitable adapter.

Driver APIs come in two shapes that the backends need to await:

    - callback-style operations, which take a trailing ``done(err, value)``
      callback and report their outcome through it (error first);
    - blocking DB-API calls, which must run off the event loop.

promisify() turns either into an ``async`` callable. Blocking calls are
submitted to an executor and report back through the same error-first
callback path, so both shapes share one completion mechanism.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
from typing import Any, Awaitable, Callable, Optional, Union

from .errors import CallbackError


def promisify(
    o: Any,
    fn: Optional[Union[str, Callable[..., Any]]] = None,
    *,
    executor: Optional[concurrent.futures.Executor] = None,
) -> Callable[..., Awaitable[Any]]:
    """
    Wrap a callback-style operation into an awaitable callable.

    Parameters
    ----------
    o:
        Either the owner object of a method named by ``fn``, or, when ``fn``
        is omitted, the operation itself (a free function).
    fn:
        Method name on ``o``, or a callable.
    executor:
        When given, the operation is a *blocking* callable instead of a
        callback-style one. It is run on this executor and its return value
        or exception is delivered as if through a callback.

    Returns
    -------
    callable
        ``async`` function. Each call forwards its arguments unchanged to the
        operation, appending only the completion callback, and returns the
        callback's value or raises its error. There is no timeout: an
        operation that never completes never resolves.
    """
    if fn is None:
        fn, o = o, None
    elif isinstance(fn, str):
        fn = getattr(o, fn)

    target = fn if executor is None else _deferred(executor, fn)

    @functools.wraps(fn)
    async def call(*args: Any) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.create_future()

        def done(err: Any = None, value: Any = None) -> None:
            loop.call_soon_threadsafe(_settle, future, err, value)

        target(*args, done)
        return await future

    return call


def _deferred(
    executor: concurrent.futures.Executor,
    fn: Callable[..., Any],
) -> Callable[..., None]:
    """
    Adapt a blocking callable to the callback convention by running it on
    ``executor``.
    """

    def start(*args: Any) -> None:
        *call_args, callback = args
        future = executor.submit(fn, *call_args)

        def finished(f: concurrent.futures.Future) -> None:
            if f.cancelled():
                callback(concurrent.futures.CancelledError(), None)
                return
            err = f.exception()
            callback(err, None if err is not None else f.result())

        future.add_done_callback(finished)

    return start


def _settle(future: asyncio.Future, err: Any, value: Any) -> None:
    # Late or repeated completions (e.g. after the awaiting task was
    # cancelled) are dropped.
    if future.done():
        return
    if err:
        if not isinstance(err, BaseException):
            err = CallbackError(err)
        future.set_exception(err)
    else:
        future.set_result(value)


__all__ = ["promisify"]
