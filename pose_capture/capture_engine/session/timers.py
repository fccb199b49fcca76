# pose_capture/capture_engine/session/timers.py
import asyncio
import logging
from functools import partial
from typing import Any, Callable, Dict, Optional
from ..common.enums import TimerKind

logger = logging.getLogger(__name__)

class AsyncioScheduler:
    """Schedules callbacks on the asyncio event loop that drives the capture session."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> Any:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)

class ScheduledTask:
    """One pending timer callback. Cancelling is idempotent."""

    def __init__(self, kind: TimerKind, generation: int):
        self.kind = kind
        self.generation = generation
        self.cancelled = False
        self.handle = None

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        handle, self.handle = self.handle, None
        if handle is not None:
            handle.cancel()

class TimerSlots:
    """At most one pending task per TimerKind, invalidated wholesale by bumping the generation.

    A callback only runs if its task is still the one held in its slot and was
    scheduled in the current generation, so a handle the scheduler failed to
    cancel can never take effect.
    """

    def __init__(self, scheduler):
        self._scheduler = scheduler
        self._tasks: Dict[TimerKind, ScheduledTask] = {}
        self.generation = 0

    def schedule(self, kind: TimerKind, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        self.cancel(kind)
        task = ScheduledTask(kind, self.generation)
        self._tasks[kind] = task
        task.handle = self._scheduler.call_later(delay, partial(self._fire, task, callback))
        return task

    def _fire(self, task: ScheduledTask, callback: Callable[[], None]):
        if task.cancelled or task.generation != self.generation or self._tasks.get(task.kind) is not task:
            logger.debug("Dropping stale %s timer.", task.kind.value)
            return
        del self._tasks[task.kind]
        task.handle = None
        callback()

    def pending(self, kind: TimerKind) -> bool:
        return kind in self._tasks

    def cancel(self, kind: TimerKind):
        task = self._tasks.pop(kind, None)
        if task is not None:
            task.cancel()

    def cancel_all(self):
        for kind in list(self._tasks):
            self.cancel(kind)

    def next_generation(self) -> int:
        self.cancel_all()
        self.generation += 1
        return self.generation
