"""Named repeating background jobs on the asyncio loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Run ``action`` every ``interval`` seconds until cancelled.

    The first run happens one interval after :meth:`start`. An exception
    raised by ``action`` is logged and the loop keeps ticking. ``action`` may
    be a plain callable or return an awaitable.
    """

    def __init__(self, name: str, interval: float, action: Callable[[], Any]) -> None:
        self.name = name
        self.interval = interval
        self.action = action
        self.runs = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Schedule the loop. Must be called with a loop available."""
        if self.running:
            return
        if loop is None:
            loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break
            await self.run_once()

    async def run_once(self) -> None:
        """Execute one tick, logging rather than raising on failure."""
        try:
            result = self.action()
            if asyncio.iscoroutine(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in periodic task '{self.name}': {e}", exc_info=True)
        finally:
            self.runs += 1

    def cancel(self) -> None:
        """Stop the loop. Safe to call when never started."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def stop(self) -> None:
        """Cancel and wait for the loop to exit."""
        task = self._task
        self.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
