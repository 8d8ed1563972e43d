"""
Deferred Callbacks
Cancellable timer handles used by the call session state machine
"""
import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable

logger = logging.getLogger(__name__)


class TimerHandle(ABC):
    """A scheduled callback that can be cancelled before it fires."""

    @abstractmethod
    def cancel(self) -> None:
        pass

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        pass


class Scheduler(ABC):
    """Schedules callbacks after a delay in seconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """
        Run callback after delay seconds.

        Callback may return an awaitable; it is then run as a task.
        """
        pass


class _AsyncioTimerHandle(TimerHandle):

    def __init__(self, handle: asyncio.TimerHandle):
        self._handle = handle

    def cancel(self) -> None:
        # A callback that already fired runs to completion
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class AsyncioScheduler(Scheduler):
    """Scheduler on the running asyncio event loop"""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = asyncio.get_running_loop()

        def _fire():
            result = callback()
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                task.add_done_callback(_log_task_failure)

        return _AsyncioTimerHandle(loop.call_later(delay, _fire))


def _log_task_failure(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Scheduled callback failed: {error}", exc_info=error)
