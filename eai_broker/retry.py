"""Backoff helpers for polling loops.

Key entrypoints:
 - ``next_delay_ms``: compute delay for exponential backoff sequences
 - ``poll_with_backoff``: re-run an async fetch until it succeeds or a deadline passes

Examples
--------
>>> next_delay_ms(0, [500, 1000, 2000])
500
>>> next_delay_ms(9, [500, 1000, 2000])  # clamped to last
2000
"""
from __future__ import annotations

import asyncio
import random
import time
from typing import Awaitable, Callable, List, TypeVar

from eai_broker.config import DEFAULT_POLL_DELAYS_MS


T = TypeVar("T")


def next_delay_ms(retry_count: int, delays: List[int] | None = None, jitter: float = 0.0) -> int:
    """Return the next delay in milliseconds for a given attempt.

    The ``retry_count`` is zero-based (first retry has ``retry_count == 0``).
    Falls back to the last provided delay if ``retry_count`` exceeds bounds.

    Parameters
    ----------
    retry_count: int
        Zero-based attempt counter.
    delays: list[int] | None
        Sequence of backoff delays to use. Defaults to ``DEFAULT_POLL_DELAYS_MS``.
    jitter: float
        Jitter percentage (0.1 = ±10%) added to the selected delay.

    Examples
    --------
    >>> next_delay_ms(2, [100, 200, 400])
    400
    >>> next_delay_ms(5, [100, 200, 400])
    400
    """
    if not delays:
        delays = DEFAULT_POLL_DELAYS_MS
    idx = max(min(retry_count, len(delays) - 1), 0)
    base = delays[idx]
    if jitter <= 0:
        return int(base)
    delta = base * jitter
    return int(random.uniform(base - delta, base + delta))


async def poll_with_backoff(
    fetch: Callable[[], Awaitable[T]],
    done: Callable[[T], bool],
    max_wait_s: float,
    delays: List[int] | None = None,
) -> tuple[T, bool]:
    """Call ``fetch`` until ``done(result)`` holds or ``max_wait_s`` elapses.

    Sleeps between attempts follow ``next_delay_ms`` and are clipped so the
    loop never overshoots the deadline. Returns the last result and whether
    it satisfied ``done``.
    """
    deadline = time.monotonic() + max(max_wait_s, 0.0)
    attempt = 0
    while True:
        result = await fetch()
        if done(result):
            return result, True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return result, False
        delay_s = next_delay_ms(attempt, delays) / 1000.0
        await asyncio.sleep(min(delay_s, remaining))
        attempt += 1
