# pose_capture/capture_engine/processing/detection_loop.py
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)

class DetectionLoop:
    """Self-rescheduling task that requests one pose estimate per display frame.

    Each tick re-evaluates `is_active`; inactive ticks do nothing but keep the
    loop alive so detection resumes as soon as the predicate turns true.
    """

    def __init__(self, step: Callable[[], None], is_active: Callable[[], bool], interval: float = 1 / 30):
        self._step = step
        self._is_active = is_active
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._cancelled = True
        self.ticks = 0
        self.inference_ticks = 0

    @property
    def is_running(self) -> bool:
        return not self._cancelled

    def start(self):
        """Schedules the loop on the running event loop. No-op if already running."""
        if not self._cancelled:
            return
        self._cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug("Detection loop started.")

    def tick(self) -> bool:
        """Runs one iteration. Returns True if a detection step was performed."""
        if self._cancelled:
            return False
        self.ticks += 1
        if not self._is_active():
            return False
        self.inference_ticks += 1
        self._step()
        return True

    async def _run(self):
        while not self._cancelled:
            try:
                self.tick()
            except Exception:
                logger.exception("Detection step failed.")
            await asyncio.sleep(self.interval)

    def cancel(self):
        """Stops the loop immediately. Safe to call when not running."""
        if self._cancelled and self._task is None:
            return
        self._cancelled = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        logger.debug("Detection loop cancelled.")
