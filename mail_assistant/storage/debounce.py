"""Debounced async task that coalesces bursts of triggers into one call."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class DebouncedTask:
    """Runs ``callback`` once, ``delay`` seconds after the last ``schedule()``.

    Owned by the component that creates it; call ``cancel()`` or ``flush()``
    on shutdown. Callback errors are logged, never raised to ``schedule()``.
    ``cancel()`` only drops a run that has not started; a run already in
    progress finishes, and ``flush()`` waits for it.

    Usage::

        writer = DebouncedTask(store.save, delay=3.0)
        writer.schedule()      # many times in a burst
        await writer.flush()   # or let the timer fire
    """

    def __init__(self, callback: Callable[[], Awaitable[None]], delay: float) -> None:
        self._callback = callback
        self._delay = delay
        self._task: asyncio.Task[None] | None = None
        self._running: asyncio.Task[None] | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def running(self) -> bool:
        return self._running is not None and not self._running.done()

    def schedule(self) -> None:
        """(Re)start the quiet-period timer. Requires a running event loop."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._wait_then_run())

    def cancel(self) -> None:
        """Drop a pending run without calling the callback."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Run the callback now if a run was pending; wait for one in progress."""
        running = self._running
        if self.pending:
            self.cancel()
            await self._run()
        if (
            running is not None
            and not running.done()
            and running is not asyncio.current_task()
        ):
            await asyncio.shield(running)

    async def _wait_then_run(self) -> None:
        await asyncio.sleep(self._delay)
        # Detach before running so a schedule() during the callback starts a
        # fresh timer instead of cancelling the in-progress write.
        self._running = asyncio.current_task()
        self._task = None
        try:
            await self._run()
        finally:
            if self._running is asyncio.current_task():
                self._running = None

    async def _run(self) -> None:
        try:
            await self._callback()
        except Exception as exc:  # noqa: BLE001
            logger.error("Debounced callback failed: %s", exc, exc_info=True)
