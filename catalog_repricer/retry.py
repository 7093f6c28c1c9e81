# catalog_repricer/retry.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    done: bool

    @property
    def timed_out(self) -> bool:
        return not self.done


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    interval: float,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PollOutcome[T]:
    """
    Call ``fetch`` until ``is_done`` accepts its value, sleeping ``interval``
    seconds between calls. ``fetch`` is called at most ``max_attempts`` times;
    there is no sleep after the final attempt. Exceptions from ``fetch``
    propagate unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    value: Optional[T] = None
    for attempt in range(1, max_attempts + 1):
        value = await fetch()
        if is_done(value):
            return PollOutcome(value=value, attempts=attempt, done=True)
        if attempt < max_attempts:
            await sleep(interval)

    return PollOutcome(value=value, attempts=max_attempts, done=False)
