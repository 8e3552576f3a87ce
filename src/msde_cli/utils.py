"""Async helpers shared by the boot pipeline and the sync engine."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterator
from dataclasses import dataclass
from typing import Any


async def first_completed(*awaitables: Awaitable[Any]) -> tuple[int, Any]:
    """Race awaitables and return the winner.

    The losers are cancelled and awaited before returning, so no task
    outlives the race. If the winner raised, the exception propagates.

    Args:
        awaitables: Coroutines, tasks or futures to race

    Returns:
        Tuple of (index of the winner, its result)
    """
    tasks = [asyncio.ensure_future(aw) for aw in awaitables]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)

    # Lowest index wins when several finished in the same loop iteration
    winner = min(done, key=tasks.index)
    return tasks.index(winner), winner.result()


async def sleep_then(seconds: float, value: Any = None) -> Any:
    """Sleep and return value. Used as the timer branch of a race."""
    await asyncio.sleep(seconds)
    return value


@dataclass
class ExponentialBackoff:
    """Exponential backoff schedule bounded by total elapsed time."""

    initial_interval: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 5.0
    max_elapsed: float = 30.0

    def intervals(self) -> Iterator[float]:
        """Yield successive sleep intervals until the budget is spent.

        The final interval is clipped so the sum never exceeds max_elapsed.
        """
        elapsed = 0.0
        interval = self.initial_interval
        while elapsed < self.max_elapsed:
            step = min(interval, self.max_interval, self.max_elapsed - elapsed)
            elapsed += step
            yield step
            interval *= self.multiplier
