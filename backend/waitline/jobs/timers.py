"""
Clock and timer boundary for notification scheduling.

The notification scheduler never touches wall-clock timers directly; it asks a
TimerBackend to run a coroutine callback after a delay and keeps the returned
handle so it can cancel it later.

Backends:
    SchedulerManager (waitline.jobs.scheduler) - APScheduler, production
    ManualTimerBackend - deterministic fake clock advanced explicitly

Usage:
    timers = ManualTimerBackend()
    handle = timers.schedule(300, send_reminder, name="final")
    await timers.advance(minutes=5)   # send_reminder runs here
"""
import heapq
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from waitline.lib.logging import get_logger


logger = get_logger(__name__)


TimerCallback = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class TimerHandle:
    """Opaque reference to a scheduled callback."""

    id: str
    fire_at: datetime
    name: str = ""


class TimerBackend(ABC):
    """
    Abstract clock + one-shot timer service.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Current time (timezone-aware UTC)."""
        pass

    @abstractmethod
    def schedule(self, delay_seconds: float, callback: TimerCallback, name: str = "") -> TimerHandle:
        """
        Run ``callback`` once after ``delay_seconds``.

        Args:
            delay_seconds: Delay from now; negative values are treated as 0
            callback: Coroutine function taking no arguments
            name: Label used in logs

        Returns:
            Handle accepted by cancel()
        """
        pass

    @abstractmethod
    def cancel(self, handle: TimerHandle) -> None:
        """
        Cancel a scheduled callback.

        Safe for handles that already fired or were already cancelled.
        """
        pass

    @abstractmethod
    def pending_count(self) -> int:
        """Number of callbacks still scheduled."""
        pass


class ManualTimerBackend(TimerBackend):
    """
    Fake clock for tests and simulations.

    Time only moves in advance(). Due callbacks run in order of fire time,
    ties in scheduling order; callbacks may schedule further timers, which
    also run if they fall due inside the same advance window.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._counter = itertools.count(1)
        self._heap: List[Tuple[datetime, int, str]] = []
        self._callbacks: Dict[str, Tuple[TimerHandle, TimerCallback]] = {}
        self.fired: List[str] = []

    def now(self) -> datetime:
        return self._now

    def schedule(self, delay_seconds: float, callback: TimerCallback, name: str = "") -> TimerHandle:
        seq = next(self._counter)
        fire_at = self._now + timedelta(seconds=max(0.0, delay_seconds))
        handle = TimerHandle(id=f"manual-{seq}", fire_at=fire_at, name=name)
        self._callbacks[handle.id] = (handle, callback)
        heapq.heappush(self._heap, (fire_at, seq, handle.id))
        return handle

    def cancel(self, handle: TimerHandle) -> None:
        self._callbacks.pop(handle.id, None)

    def pending_count(self) -> int:
        return len(self._callbacks)

    def pending_names(self) -> List[str]:
        """Names of scheduled callbacks in firing order."""
        ordered = sorted(item for item in self._heap if item[2] in self._callbacks)
        return [self._callbacks[handle_id][0].name for _, _, handle_id in ordered]

    async def advance(self, seconds: float = 0, minutes: float = 0) -> int:
        """
        Move the clock forward, firing every callback that falls due.

        Returns:
            Number of callbacks fired
        """
        target = self._now + timedelta(seconds=seconds, minutes=minutes)
        fired = 0

        while self._heap and self._heap[0][0] <= target:
            fire_at, _, handle_id = heapq.heappop(self._heap)
            scheduled = self._callbacks.pop(handle_id, None)
            if scheduled is None:
                continue  # cancelled

            handle, callback = scheduled
            self._now = fire_at
            try:
                await callback()
            except Exception as e:
                logger.error(
                    f"Timer callback {handle.name or handle.id} raised {e.__class__.__name__}: {e}",
                    exc_info=True,
                )
            self.fired.append(handle.name)
            fired += 1

        self._now = target
        return fired

    async def run_due(self) -> int:
        """Fire callbacks due at the current time without moving the clock."""
        return await self.advance(0)
