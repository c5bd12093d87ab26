"""Async single-flight helper.

Coordinates concurrent callers of the same operation so only one coroutine
performs the work while the others await the same Future.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    try:
        _ = fut.exception()
    except asyncio.CancelledError:
        return


class SingleFlight(Generic[T]):
    """At most one in-flight execution of an operation.

    Callers arriving while the operation runs share its outcome, result or
    exception. Once it settles the next caller starts a fresh execution;
    nothing is cached here.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._inflight: asyncio.Future[T] | None = None

    @property
    def in_flight(self) -> bool:
        """Whether an execution is currently running."""
        return self._inflight is not None

    async def run(self, work: Callable[[], Awaitable[T]]) -> T:
        """Run *work*, or join the execution already in flight."""
        async with self._lock:
            fut = self._inflight
            if fut is None:
                fut = asyncio.get_running_loop().create_future()
                fut.add_done_callback(consume_future_exception)
                self._inflight = fut
                creator = True
            else:
                creator = False

        if not creator:
            # A cancelled joiner must not cancel the shared future.
            return await asyncio.shield(fut)

        try:
            value = await work()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(value)
            return value
        finally:
            async with self._lock:
                self._inflight = None
