"""
Plugin Base

A plugin is any object with a ``name`` and ``setup(context)``; setup may
return a zero-argument disposer that the engine calls on dispose().

Timers used by plugins fire on the running asyncio loop when there is one,
otherwise on a daemon thread.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Optional, Protocol, Set

if TYPE_CHECKING:
    from tylo_lens.observability.lens import PluginContext


logger = logging.getLogger(__name__)

Disposer = Callable[[], None]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class LensPlugin(ABC):
    name: str = "plugin"

    @abstractmethod
    def setup(self, context: "PluginContext") -> Optional[Disposer]:
        """Subscribe / register with the engine. Return a disposer to undo it."""
        pass


def call_later(delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
    """One-shot timer. The returned handle's cancel() stops it."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        timer = threading.Timer(delay_ms / 1000.0, callback)
        timer.daemon = True
        timer.start()
        return timer
    return loop.call_later(delay_ms / 1000.0, callback)


def spawn(coro: Coroutine[Any, Any, Any], tasks: Set[asyncio.Task]) -> None:
    """
    Run a coroutine without blocking the caller's loop.

    Inside a loop it becomes a task (kept in ``tasks`` until done); on a
    timer thread it simply runs to completion.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(coro)
        return
    task = loop.create_task(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
