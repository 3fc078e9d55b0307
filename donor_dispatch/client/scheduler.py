"""
Timer abstraction for registration retries.

Retries are scheduled and the caller returns immediately; nothing blocks on
a sleep. Tests drive a virtual clock through the same interface.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledCall:
    """Handle for a scheduled callback."""

    def __init__(self, when: float, callback: Callback):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Scheduler(ABC):
    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> ScheduledCall:
        """Run callback after delay seconds unless the returned handle is cancelled first."""


class AsyncioScheduler(Scheduler):
    """Schedules coroutine callbacks on the running event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    def call_later(self, delay: float, callback: Callback) -> ScheduledCall:
        loop = self._loop or asyncio.get_running_loop()
        call = _AsyncioCall(loop.time() + delay, callback)
        call.handle = loop.call_later(delay, self._fire, call)
        return call

    def _fire(self, call: "_AsyncioCall") -> None:
        if call.cancelled:
            return
        task = asyncio.ensure_future(call.callback(), loop=self._loop)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Scheduled callback failed: {task.exception()}")


class _AsyncioCall(ScheduledCall):
    handle: Optional[asyncio.TimerHandle] = None

    def cancel(self) -> None:
        super().cancel()
        if self.handle is not None:
            self.handle.cancel()
