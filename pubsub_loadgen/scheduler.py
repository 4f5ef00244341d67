import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class Clock(Protocol):
    def time(self) -> float:
        ...

    async def sleep(self, seconds: float) -> None:
        ...


class AsyncioClock:
    """Clock backed by the running event loop's monotonic timer."""

    def time(self) -> float:
        return asyncio.get_running_loop().time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class Scheduler:
    """
    Owns every timer-driven task of the run.

    All work is multiplexed onto the single running event loop:
    - call_later: one-shot callback after a relative delay
    - call_every: recurring callback at a fixed period
    - spawn: long-lived coroutine (publisher chains)

    cancel_all() cancels everything still pending and waits for the tasks
    to unwind. It is idempotent, and the scheduler refuses new work once
    it has been called.

    A task that dies with an exception is reported to the loop's exception
    handler instead of being silently dropped.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or AsyncioClock()
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        if self._closed:
            coro.close()
            raise RuntimeError("Scheduler is shut down")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.Task:
        async def _fire() -> None:
            await self.clock.sleep(delay)
            callback(*args)

        return self.spawn(_fire(), name=f"call_later:{getattr(callback, '__name__', callback)}")

    def call_every(self, period: float, callback: Callable[..., Any], *args: Any) -> asyncio.Task:
        if period <= 0:
            raise ValueError("Period must be positive")

        async def _loop() -> None:
            # Deadlines are anchored to the start time so the tick does not drift
            next_fire = self.clock.time() + period
            while True:
                await self.clock.sleep(max(0.0, next_fire - self.clock.time()))
                callback(*args)
                next_fire += period

        return self.spawn(_loop(), name=f"call_every:{getattr(callback, '__name__', callback)}")

    async def cancel_all(self) -> None:
        if self._closed:
            return
        self._closed = True

        current = asyncio.current_task()
        tasks = [task for task in self._tasks if task is not current]
        for task in tasks:
            task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Cancelled {len(tasks)} scheduled task(s)")

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            task.get_loop().call_exception_handler({
                "message": f"Unhandled exception in scheduled task {task.get_name()}",
                "exception": exc,
                "task": task,
            })
