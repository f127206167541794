"""Bounded "wait until the external resource is usable" polling.

The poller never raises on a deadline: it returns ``ReadinessResult(ready=False)``
and the caller decides whether that is fatal. Probe errors listed in
``transient_errors`` (and probe timeouts) count as "not ready yet"; any other
error propagates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

MAX_TICK_FRACTION = 0.95


@dataclass(frozen=True, slots=True)
class ReadinessResult:
    ready: bool
    attempts: int
    elapsed_seconds: float


async def wait_until_ready(
    check: Callable[[], Awaitable[bool]],
    *,
    timeout_seconds: float,
    poll_interval_seconds: float,
    check_timeout_seconds: float = 10.0,
    on_tick: Callable[[float], Awaitable[object]] | None = None,
    transient_errors: tuple[type[BaseException], ...] = (),
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> ReadinessResult:
    """Poll ``check`` until it returns True or ``timeout_seconds`` elapse.

    After every unready probe ``on_tick`` receives
    ``min(elapsed / timeout, 0.95)`` so callers can keep progress moving
    during long waits.
    """
    if timeout_seconds <= 0:
        raise ValueError('timeout_seconds must be positive')
    if poll_interval_seconds <= 0:
        raise ValueError('poll_interval_seconds must be positive')

    started = clock()
    attempts = 0

    while True:
        remaining = timeout_seconds - (clock() - started)
        if remaining <= 0:
            break

        attempts += 1
        try:
            ready = await asyncio.wait_for(check(), timeout=min(check_timeout_seconds, remaining))
        except asyncio.TimeoutError:
            logger.debug('Readiness probe timed out', extra={'attempt': attempts})
            ready = False
        except transient_errors as exc:
            logger.debug(
                'Readiness probe failed, treating as not ready',
                extra={'attempt': attempts, 'error': str(exc)},
            )
            ready = False

        elapsed = clock() - started
        if ready:
            return ReadinessResult(ready=True, attempts=attempts, elapsed_seconds=elapsed)

        if on_tick is not None:
            await on_tick(min(elapsed / timeout_seconds, MAX_TICK_FRACTION))

        remaining = timeout_seconds - elapsed
        if remaining <= 0:
            break
        await sleep(min(poll_interval_seconds, remaining))

    elapsed = clock() - started
    logger.info(
        'Readiness wait timed out',
        extra={'attempts': attempts, 'elapsed_seconds': round(elapsed, 3)},
    )
    return ReadinessResult(ready=False, attempts=attempts, elapsed_seconds=elapsed)
