"""
Scheduling primitives shared by the pollers and the state machine.

Everything time-related goes through a Scheduler instance so components never
reach for the event loop directly and tests can substitute their own clock.
"""

import asyncio
import time
from typing import Any, Coroutine, Optional


class CancellationToken:
    """One-shot stop signal that can also be awaited with a timeout."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self, timeout_ms: Optional[float] = None) -> bool:
        """Wait until cancelled or until timeout_ms elapses.

        Returns True when the token was cancelled.
        """
        if self._event.is_set():
            return True
        timeout = None if timeout_ms is None else max(timeout_ms, 0) / 1000
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class Scheduler:
    """asyncio-backed clock, sleeper and task spawner."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000

    async def sleep(self, delay_ms: float) -> None:
        await asyncio.sleep(max(delay_ms, 0) / 1000)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(coro, name=name)

    @staticmethod
    def cancel_task(task: Optional[asyncio.Task]) -> None:
        """Cancel a task unless it is finished or is the caller itself."""
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()


default_scheduler = Scheduler()
