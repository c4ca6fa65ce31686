"""Async single-flight table.

Coordinates concurrent lookups for the same key so that one coroutine does the
work while every other caller awaits the same Future. The in-flight table is
the only structure in the engine that needs mutual exclusion.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

K = TypeVar("K")
T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if fut.cancelled():
        return
    _ = fut.exception()


class SingleFlight(Generic[K, T]):
    """Memoizing single-flight runner keyed by *K*.

    Completed values are kept in ``results``; a key is never computed twice
    while its value is cached or its computation is in flight.
    """

    def __init__(self) -> None:
        self.results: dict[K, T] = {}
        self._inflight: dict[K, asyncio.Future[T]] = {}
        self._lock = asyncio.Lock()

    def peek(self, key: K) -> T | None:
        return self.results.get(key)

    def seed(self, key: K, value: T) -> bool:
        """Store *value* unless the key already has a result."""
        if key in self.results:
            return False
        self.results[key] = value
        return True

    def inflight_count(self) -> int:
        return len(self._inflight)

    def clear(self) -> None:
        self.results.clear()
        for fut in self._inflight.values():
            fut.cancel()
        self._inflight.clear()

    async def run(self, key: K, work: Callable[[], Awaitable[T]]) -> T:
        """Return the cached value for *key*, or compute it exactly once.

        - Cached: returns immediately.
        - In flight: awaits the existing Future.
        - Otherwise: this caller becomes the creator and runs *work*.
        """
        if key in self.results:
            return self.results[key]

        async with self._lock:
            if key in self.results:
                return self.results[key]
            fut = self._inflight.get(key)
            creator = fut is None
            if fut is None:
                fut = asyncio.get_running_loop().create_future()
                fut.add_done_callback(consume_future_exception)
                self._inflight[key] = fut

        if not creator:
            return await fut

        try:
            value = await work()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            if not fut.done():
                fut.set_exception(e)
            raise
        else:
            async with self._lock:
                self.results[key] = value
            if not fut.done():
                fut.set_result(value)
            return value
        finally:
            async with self._lock:
                if self._inflight.get(key) is fut:
                    del self._inflight[key]
