"""Named timer service used by the scheduler.

Timers are identified by name (``periodic-sync``, ``retry-sync-<id>``).
Scheduling a name that already exists replaces the old timer in one step,
so a reschedule never leaves two timers with the same name alive.

Two implementations:
    AsyncioTimerService: real timers on the running event loop
    ManualTimerService:  virtual clock driven by ``advance()`` for tests
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from marksync.models.base import utc_now

logger = logging.getLogger("marksync.timers")

TimerHandler = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class TimerInfo:
    """A pending timer.

    Attributes:
        name:           Timer name.
        scheduled_time: UTC time of the next firing.
        period_minutes: Repeat period, None for one-shot timers.
    """

    name: str
    scheduled_time: datetime
    period_minutes: float | None = None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "scheduled_time": self.scheduled_time.isoformat(),
            "period_minutes": self.period_minutes,
        }


class TimerService(ABC):
    """Abstract named-timer service."""

    def __init__(self) -> None:
        self._handlers: list[TimerHandler] = []

    def on_fire(self, handler: TimerHandler) -> None:
        """Register a coroutine called with the timer name on every firing."""
        self._handlers.append(handler)

    async def _dispatch(self, name: str) -> None:
        logger.debug("Timer fired: %s", name)
        for handler in list(self._handlers):
            try:
                await handler(name)
            except Exception:
                # Nothing upstream of a timer can handle this
                logger.exception("Timer handler failed for %s", name)

    @abstractmethod
    async def schedule_once(self, name: str, delay_minutes: float) -> TimerInfo:
        """Fire ``name`` once after ``delay_minutes``."""

    @abstractmethod
    async def schedule_repeating(self, name: str, period_minutes: float) -> TimerInfo:
        """Fire ``name`` every ``period_minutes``, first firing one period from now."""

    @abstractmethod
    async def cancel(self, name: str) -> bool:
        """Cancel a timer. Returns True if one was pending."""

    @abstractmethod
    async def cancel_all(self) -> None:
        """Cancel every pending timer."""

    async def close(self) -> None:
        """Cancel every timer and wait for handlers that are still running."""
        await self.cancel_all()

    @abstractmethod
    async def list(self) -> list[TimerInfo]:
        """Return all pending timers."""

    async def get(self, name: str) -> TimerInfo | None:
        for timer in await self.list():
            if timer.name == name:
                return timer
        return None


class AsyncioTimerService(TimerService):
    """Timers backed by asyncio tasks.

    Repeating timers keep a fixed cadence anchored at creation, and every
    firing runs its handlers in a separate task so a slow handler never
    delays another timer or the next period.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        super().__init__()
        self._clock = clock
        self._timers: dict[str, tuple[TimerInfo, asyncio.Task]] = {}
        self._running: set[asyncio.Task] = set()

    def _spawn_dispatch(self, name: str) -> None:
        task = asyncio.create_task(self._dispatch(name), name=f"timer-dispatch:{name}")
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    def _replace(self, name: str, info: TimerInfo, task: asyncio.Task) -> None:
        old = self._timers.pop(name, None)
        if old is not None:
            old[1].cancel()
        self._timers[name] = (info, task)

    async def schedule_once(self, name: str, delay_minutes: float) -> TimerInfo:
        info = TimerInfo(name, self._clock() + timedelta(minutes=delay_minutes))
        task = asyncio.create_task(self._run_once(name, delay_minutes * 60), name=f"timer:{name}")
        self._replace(name, info, task)
        logger.debug("Scheduled one-shot timer %s in %.2f min", name, delay_minutes)
        return info

    async def schedule_repeating(self, name: str, period_minutes: float) -> TimerInfo:
        info = TimerInfo(
            name, self._clock() + timedelta(minutes=period_minutes), period_minutes
        )
        task = asyncio.create_task(
            self._run_repeating(name, period_minutes), name=f"timer:{name}"
        )
        self._replace(name, info, task)
        logger.debug("Scheduled repeating timer %s every %.2f min", name, period_minutes)
        return info

    async def _run_once(self, name: str, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        entry = self._timers.get(name)
        if entry is not None and entry[1] is asyncio.current_task():
            del self._timers[name]
        self._spawn_dispatch(name)

    async def _run_repeating(self, name: str, period_minutes: float) -> None:
        loop = asyncio.get_running_loop()
        period_seconds = period_minutes * 60
        anchor = loop.time()
        tick = 1
        while True:
            await asyncio.sleep(max(0.0, anchor + tick * period_seconds - loop.time()))
            tick += 1
            entry = self._timers.get(name)
            if entry is not None and entry[1] is asyncio.current_task():
                self._timers[name] = (
                    replace(entry[0], scheduled_time=self._clock() + timedelta(minutes=period_minutes)),
                    entry[1],
                )
            self._spawn_dispatch(name)

    async def cancel(self, name: str) -> bool:
        entry = self._timers.pop(name, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    async def cancel_all(self) -> None:
        for name in list(self._timers):
            await self.cancel(name)

    async def close(self) -> None:
        await self.cancel_all()
        current = asyncio.current_task()
        running = [task for task in self._running if task is not current]
        if running:
            logger.debug("Waiting for %d running timer handler(s)", len(running))
            await asyncio.gather(*running, return_exceptions=True)
            # handlers may have scheduled new timers while finishing
            await self.cancel_all()

    async def list(self) -> list[TimerInfo]:
        return [info for info, _task in self._timers.values()]


class ManualTimerService(TimerService):
    """Virtual-clock timers.

    Nothing fires until ``advance()`` moves the clock; due timers then fire in
    time order and their handlers are awaited inline, so a test sees every
    effect of a firing before ``advance()`` returns.

    Usage::

        timers = ManualTimerService()
        timers.on_fire(handler)
        await timers.schedule_once("retry-sync-github", 5)
        await timers.advance(5)   # handler("retry-sync-github") has completed
    """

    def __init__(self, start: datetime | None = None) -> None:
        super().__init__()
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._timers: dict[str, TimerInfo] = {}
        self.fired: list[str] = []

    async def schedule_once(self, name: str, delay_minutes: float) -> TimerInfo:
        info = TimerInfo(name, self.now + timedelta(minutes=delay_minutes))
        self._timers[name] = info
        return info

    async def schedule_repeating(self, name: str, period_minutes: float) -> TimerInfo:
        info = TimerInfo(name, self.now + timedelta(minutes=period_minutes), period_minutes)
        self._timers[name] = info
        return info

    async def cancel(self, name: str) -> bool:
        return self._timers.pop(name, None) is not None

    async def cancel_all(self) -> None:
        self._timers.clear()

    async def list(self) -> list[TimerInfo]:
        return sorted(self._timers.values(), key=lambda t: (t.scheduled_time, t.name))

    async def advance(self, minutes: float) -> None:
        """Move the clock forward, firing every timer that comes due."""
        target = self.now + timedelta(minutes=minutes)
        while True:
            due = [t for t in self._timers.values() if t.scheduled_time <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.scheduled_time, t.name))
            self.now = timer.scheduled_time
            if timer.period_minutes:
                self._timers[timer.name] = replace(
                    timer,
                    scheduled_time=timer.scheduled_time + timedelta(minutes=timer.period_minutes),
                )
            else:
                del self._timers[timer.name]
            self.fired.append(timer.name)
            await self._dispatch(timer.name)
        self.now = target
