"""
Listener callback dispatch.

The orchestrator and the live update channel never call host callbacks
directly; they go through a :class:`Dispatcher` so the host decides on which
thread or loop the callback runs.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Set

from ..utils.logging import get_logger


logger = get_logger("lexisync.sync.dispatch")


class Dispatcher(ABC):
    """Invokes listener callbacks on behalf of a component."""

    @abstractmethod
    def invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        """Run ``callback(*args)``. Errors are logged, never propagated."""
        pass


class ImmediateDispatcher(Dispatcher):
    """
    Calls back inline on the current thread.

    Coroutine callbacks are scheduled as tasks on the running loop.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            result = callback(*args)
        except Exception as e:
            logger.error("callback_failed", callback=_name(callback), error=str(e))
            return

        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("callback_failed", error=str(task.exception()))


class LoopDispatcher(Dispatcher):
    """Hands callbacks to an event loop, safe to call from any thread."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_event_loop()
        self._inline = ImmediateDispatcher()

    def invoke(self, callback: Callable[..., Any], *args: Any) -> None:
        if self.loop.is_closed():
            logger.debug("dispatch_dropped", callback=_name(callback))
            return
        self.loop.call_soon_threadsafe(self._inline.invoke, callback, *args)


def _name(callback: Callable[..., Any]) -> str:
    return getattr(callback, "__qualname__", None) or repr(callback)


__all__ = ['Dispatcher', 'ImmediateDispatcher', 'LoopDispatcher']
