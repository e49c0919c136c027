from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from research.errors import DispatchTimeout

T = TypeVar("T")

CHANNEL_CLASSES = ("global", "direct_message", "reply", "thread_create")


@dataclass(frozen=True)
class ClassBudget:
    calls: int
    per_seconds: float

    @property
    def min_interval(self) -> float:
        return float(self.per_seconds) / max(1, int(self.calls))


class ClassScheduler:
    """Paces one class of outbound calls.

    At most one call is in flight; call starts are at least `min_interval`
    apart; waiters run in submission order (asyncio.Lock wakes waiters FIFO).
    A failing call releases the slot and its exception reaches the caller.
    """

    def __init__(
        self,
        name: str,
        budget: ClassBudget,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timeout_seconds: float | None = None,
    ) -> None:
        self.name = name
        self.budget = budget
        self._clock = clock
        self._sleep = sleep
        self.timeout_seconds = timeout_seconds
        self._lock = asyncio.Lock()
        self._last_start: float | None = None
        self.started = 0
        self.failed = 0

    @property
    def min_interval(self) -> float:
        return self.budget.min_interval

    async def schedule(self, action: Callable[[], Awaitable[T]]) -> T:
        async with self._lock:
            if self._last_start is not None:
                wait = self._last_start + self.min_interval - self._clock()
                if wait > 0:
                    await self._sleep(wait)
            self._last_start = self._clock()
            self.started += 1
            try:
                if self.timeout_seconds and self.timeout_seconds > 0:
                    try:
                        return await asyncio.wait_for(action(), timeout=self.timeout_seconds)
                    except asyncio.TimeoutError as e:
                        raise DispatchTimeout(self.name, self.timeout_seconds) from e
                return await action()
            except Exception:
                self.failed += 1
                raise


class ScheduledDispatcher:
    def __init__(
        self,
        budgets: dict[str, tuple[int, float]],
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timeout_seconds: float | None = None,
    ) -> None:
        missing = [c for c in CHANNEL_CLASSES if c not in budgets]
        if missing:
            raise ValueError(f"Missing dispatch budgets for: {', '.join(missing)}")
        self._schedulers: dict[str, ClassScheduler] = {
            name: ClassScheduler(
                name,
                ClassBudget(calls=int(budgets[name][0]), per_seconds=float(budgets[name][1])),
                clock=clock,
                sleep=sleep,
                timeout_seconds=timeout_seconds,
            )
            for name in CHANNEL_CLASSES
        }

    def scheduler_for(self, channel_class: str) -> ClassScheduler:
        try:
            return self._schedulers[channel_class]
        except KeyError:
            raise ValueError(f"Unknown dispatch class: {channel_class!r}") from None

    async def schedule(self, channel_class: str, action: Callable[[], Awaitable[T]]) -> T:
        return await self.scheduler_for(channel_class).schedule(action)

    async def best_effort(self, channel_class: str, action: Callable[[], Awaitable[Any]], *, label: str) -> bool:
        """Schedule a side-channel call (typing, presence); failures are logged, never raised."""
        try:
            await self.schedule(channel_class, action)
            return True
        except Exception as e:
            print(f"[Dispatch] best-effort {label} failed: {e}")
            return False

    def stats(self) -> dict[str, dict[str, float]]:
        return {
            name: {"started": s.started, "failed": s.failed, "min_interval": s.min_interval}
            for name, s in self._schedulers.items()
        }
