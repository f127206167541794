"""Weighted progress model and per-run progress reporting.

``percent()`` maps (completed steps, fraction of the current step) to a
percentage of the total step weight. It is capped at 99: only the terminal
``complete`` event means the run is done, so a ``progress`` event never
reports 100.
"""

from __future__ import annotations

import asyncio
import logging
import math
from typing import Awaitable, Callable, Sequence

from .events import EventStream, ProgressEvent
from .steps import STEPS, Step

logger = logging.getLogger(__name__)

MAX_PROGRESS = 99


def percent(
    completed_steps: int,
    fraction: float = 0.0,
    steps: Sequence[Step] = STEPS,
) -> int:
    """Return overall progress for ``completed_steps`` plus ``fraction`` of the next."""
    total = sum(step.weight for step in steps)
    if total <= 0:
        return 0

    completed = min(max(completed_steps, 0), len(steps))
    fraction = min(max(fraction, 0.0), 1.0)

    done = sum(step.weight for step in steps[:completed])
    current = steps[completed].weight * fraction if completed < len(steps) else 0.0

    # Half-up rounding; Python's round() would round half to even.
    value = math.floor((done + current) / total * 100 + 0.5)
    return min(value, MAX_PROGRESS)


class ProgressReporter:
    """Emits ``progress`` events for one run, never moving backwards."""

    def __init__(self, stream: EventStream, steps: Sequence[Step] = STEPS) -> None:
        self._stream = stream
        self._steps = steps
        self._last = 0

    @property
    def last_percent(self) -> int:
        return self._last

    async def enter(self, index: int) -> int:
        """Report entry into step ``index``."""
        step = self._steps[index]
        return await self._emit(percent(index, 0.0, self._steps), step.title, step.subtitle)

    async def tick(self, index: int, fraction: float, subtitle: str | None = None) -> int:
        """Report partial progress inside step ``index``."""
        step = self._steps[index]
        return await self._emit(
            percent(index, fraction, self._steps),
            step.title,
            subtitle or step.subtitle,
        )

    async def _emit(self, value: int, title: str, subtitle: str) -> int:
        value = max(value, self._last)
        self._last = value
        await self._stream.send(ProgressEvent(progress=value, title=title, subtitle=subtitle))
        return value


class Heartbeat:
    """Emit periodic progress ticks while a long call is in flight.

    Usage::

        async with Heartbeat(on_beat, interval_seconds=6.0):
            await slow_platform_call()

    ``on_beat`` receives the beat number (1, 2, ...) and the fraction to
    report, which starts at ``start`` and grows by ``increment`` per beat up
    to ``ceiling``.
    """

    def __init__(
        self,
        on_beat: Callable[[int, float], Awaitable[object]],
        *,
        interval_seconds: float = 6.0,
        start: float = 0.2,
        increment: float = 0.01,
        ceiling: float = 0.95,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._on_beat = on_beat
        self._interval = interval_seconds
        self._start = start
        self._increment = increment
        self._ceiling = ceiling
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.beats = 0

    def fraction_for(self, beat: int) -> float:
        return min(self._start + beat * self._increment, self._ceiling)

    async def _run(self) -> None:
        while True:
            await self._sleep(self._interval)
            self.beats += 1
            try:
                await self._on_beat(self.beats, self.fraction_for(self.beats))
            except Exception as exc:
                logger.warning('Heartbeat tick failed: %s', exc)
                return

    async def __aenter__(self) -> Heartbeat:
        self._task = asyncio.create_task(self._run())
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
