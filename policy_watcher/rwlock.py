"""Reader/writer lock for asyncio tasks.

asyncio ships no shared lock, and ``asyncio.Condition`` may suspend on release,
so this lock hands ownership over through futures instead. Releasing never
suspends: a reader can copy a guarded value, release, and act on the copy
before any writer gets to run.
"""

import asyncio
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ReadWriteLock:
    """Many readers or one writer, granted in FIFO order.

    A reader arriving while a writer is queued waits behind that writer, so a
    steady stream of readers cannot starve ``close``-style writers.
    """

    def __init__(self) -> None:
        self._readers = 0
        self._writer = False
        # (is_writer, future) in arrival order
        self._waiters: deque[tuple[bool, asyncio.Future[None]]] = deque()

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def write_locked(self) -> bool:
        return self._writer

    async def acquire_read(self) -> None:
        if not self._writer and not self._waiters:
            self._readers += 1
            return
        await self._wait(is_writer=False)

    def release_read(self) -> None:
        if self._readers <= 0:
            raise RuntimeError("release_read called without a matching acquire_read")
        self._readers -= 1
        self._wake_up()

    async def acquire_write(self) -> None:
        if not self._writer and self._readers == 0 and not self._waiters:
            self._writer = True
            return
        await self._wait(is_writer=True)

    def release_write(self) -> None:
        if not self._writer:
            raise RuntimeError("release_write called without a matching acquire_write")
        self._writer = False
        self._wake_up()

    @asynccontextmanager
    async def reader(self) -> AsyncIterator[None]:
        await self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @asynccontextmanager
    async def writer(self) -> AsyncIterator[None]:
        await self.acquire_write()
        try:
            yield
        finally:
            self.release_write()

    async def _wait(self, is_writer: bool) -> None:
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry = (is_writer, fut)
        self._waiters.append(entry)
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # ownership was handed over right before the cancellation landed
                if is_writer:
                    self.release_write()
                else:
                    self.release_read()
            else:
                if entry in self._waiters:
                    self._waiters.remove(entry)
                self._wake_up()
            raise

    def _wake_up(self) -> None:
        """Grant the lock to the waiters at the head of the queue."""
        while self._waiters and not self._writer:
            is_writer, fut = self._waiters[0]
            if fut.done():
                self._waiters.popleft()
                continue
            if is_writer:
                if self._readers:
                    return
                self._waiters.popleft()
                self._writer = True
                fut.set_result(None)
                return
            self._waiters.popleft()
            self._readers += 1
            fut.set_result(None)
