"""Cooperative counting semaphore with a FIFO waiter queue."""

import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque, TypeVar

T = TypeVar("T")


class Semaphore:
    """Counting semaphore that serves waiters strictly in arrival order.

    A released permit is handed directly to the oldest waiter, so a task
    that arrives while others are queued cannot jump ahead of them.
    """

    def __init__(self, permits: int):
        if permits < 1:
            raise ValueError("permits must be >= 1")
        self._permits = permits
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def available(self) -> int:
        """Number of permits that can be taken without waiting."""
        return self._permits

    @property
    def waiting(self) -> int:
        """Number of tasks queued for a permit."""
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> None:
        if self._permits > 0 and not self.waiting:
            self._permits -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The permit was already handed to us; pass it on.
                self.release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._permits += 1

    async def run(self, task: Callable[[], Awaitable[T]]) -> T:
        """Run ``task`` once a permit is available, releasing it afterwards."""
        await self.acquire()
        try:
            return await task()
        finally:
            self.release()

    async def __aenter__(self) -> "Semaphore":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
