"""
NoteBuddy Client - Cancellable Scheduled Tasks
===============================================

What:  One abstraction for every timer the client uses: retry backoff, poll
       interval, polling ceiling, recording ticker, health refresh.
How:   `Scheduler.call_later()` returns a `ScheduledTask` handle. The owner
       stores the handle and cancels it on every exit transition, so no
       callback can fire against torn-down state.
       `Scheduler.sleep()` is the single suspension point for inline delays.
Who:   HealthMonitor, ResilientClient (through tenacity's `sleep=` hook) and
       TranscriptionJobController.

Handle lifecycle:
    scheduled ──(delay elapses)──▶ running ──(callback returns)──▶ done
        │                            │
        └──────(cancel())────────────┴──▶ cancelled

    Cancelling a running handle also cancels whatever the callback is awaiting
    (an in-flight HTTP request, for example). A handle cancelled from inside
    its own callback ignores the request, so a callback can safely call the
    owner's "cancel all timers" routine.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class ScheduledTask(ABC):
    """Handle returned by `Scheduler.call_later()`."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the task if it has not completed. Idempotent."""
        ...

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...

    @property
    @abstractmethod
    def done(self) -> bool:
        """True once the callback finished or the task was cancelled."""
        ...


class Scheduler(ABC):
    """
    Clock + timer source.

    Implementations:
        - AsyncioScheduler: real event-loop time (production)
        - a manual fake clock in the test-suite (deterministic, instant)
    """

    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds."""
        ...

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> ScheduledTask:
        """Run `await callback()` after `delay` seconds."""
        ...

    @property
    @abstractmethod
    def pending(self) -> int:
        """Number of scheduled tasks that have neither fired nor been cancelled."""
        ...


class AsyncioTask(ScheduledTask):
    """ScheduledTask backed by one asyncio.Task (delay, then callback)."""

    def __init__(self, scheduler: "AsyncioScheduler", delay: float, callback: Callback):
        self._scheduler = scheduler
        self._callback = callback
        self._fired = False
        self._cancel_requested = False
        self._task: asyncio.Task = asyncio.ensure_future(self._run(delay))
        self._task.add_done_callback(self._on_done)

    async def _run(self, delay: float) -> None:
        await asyncio.sleep(max(delay, 0))
        self._fired = True
        try:
            await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Callbacks own their error handling; anything reaching here is a bug
            logger.error(
                "Scheduled callback %s failed: %s",
                getattr(self._callback, "__qualname__", repr(self._callback)),
                str(e),
                exc_info=True,
            )

    def _on_done(self, _task: asyncio.Task) -> None:
        self._scheduler._active.discard(self)

    @property
    def fired(self) -> bool:
        return self._fired

    def cancel(self) -> None:
        if self._task.done():
            return
        if self._task is asyncio.current_task():
            return
        self._cancel_requested = True
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested or self._task.cancelled()

    @property
    def done(self) -> bool:
        return self._task.done()


class AsyncioScheduler(Scheduler):
    """Scheduler over the running asyncio event loop."""

    def __init__(self) -> None:
        self._active: Set[AsyncioTask] = set()

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(seconds, 0))

    def call_later(self, delay: float, callback: Callback) -> ScheduledTask:
        handle = AsyncioTask(self, delay, callback)
        self._active.add(handle)
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for task in self._active if not (task.fired or task.done or task.cancelled))


def cancel_task(handle: Optional[ScheduledTask]) -> None:
    """Cancel a possibly-absent handle."""
    if handle is not None:
        handle.cancel()
