# core/scheduler.py
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Tick = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """
    Runs `fn` every `interval_seconds` on the event loop until stopped.
    The first run happens one interval after start. A failing run is logged
    and the loop keeps going.
    """

    def __init__(self, name: str, interval_seconds: float, fn: Tick) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self.name = name
        self._interval = float(interval_seconds)
        self._fn = fn
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"periodic:{self.name}")
        logger.info("periodic.started name=%s every=%ss", self.name, self._interval)

    async def run_once(self) -> Any:
        result = self._fn()
        if inspect.isawaitable(result):
            result = await result
        return result

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                result = await self.run_once()
                logger.debug("periodic.ran name=%s result=%s", self.name, result)
            except Exception:
                logger.exception("periodic.error name=%s", self.name)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("periodic.stopped name=%s", self.name)
