"""Cancellable fixed-interval background polling."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

MIN_INTERVAL_SECONDS = 0.1


class Poller:
    """Runs ``tick`` immediately and then every ``interval`` seconds.

    Tick failures are logged and swallowed; the next tick is the retry. A
    tick already in flight when ``stop`` is called is allowed to finish.
    """

    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[None]],
        interval: float,
    ) -> None:
        self.name = name
        self.tick = tick
        self.interval = max(MIN_INTERVAL_SECONDS, float(interval))
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, *, immediate: bool = True) -> None:
        """Start the background loop if it is not already running.

        With ``immediate=False`` the first tick waits one interval.
        """

        if not self.running:
            self._stopping = asyncio.Event()
            self._task = asyncio.create_task(
                self._run(immediate), name=f"poller:{self.name}"
            )

    async def stop(self) -> None:
        """Stop the background loop."""

        if self._task is None:
            return

        self._stopping.set()
        task, self._task = self._task, None
        await task

    async def _run(self, immediate: bool) -> None:
        stopping = self._stopping
        if not immediate and await self._wait(stopping):
            return

        while not stopping.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Poller %s tick failed: %s", self.name, e)

            if await self._wait(stopping):
                return

    async def _wait(self, stopping: asyncio.Event) -> bool:
        """Sleep one interval; True when stop was requested meanwhile."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stopping.wait(), timeout=self.interval)
        return stopping.is_set()
