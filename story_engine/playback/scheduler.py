from __future__ import annotations

import asyncio
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Runs playback timers on an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(delay_ms, 0) / 1000, callback)


class TimerSlot:
    """Holds at most one pending timer; scheduling replaces and cancels the previous one."""

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handle: TimerHandle | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, delay_ms: int, callback: Callable[[], None]) -> None:
        self.cancel()
        generation = self._generation

        def _fire() -> None:
            # A fire that survived cancel or replacement is ignored.
            if generation != self._generation:
                return
            self._handle = None
            callback()

        self._handle = self._scheduler.call_later(delay_ms, _fire)

    def cancel(self) -> bool:
        self._generation += 1
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True
