"""Background motion loops for course elements.

Every periodic behaviour (tweened oscillation, rotation, rise/sink,
projectile spawning) runs as its own task. Loops hold a CancelToken and
check it before each step, so tearing down a course stops them within one
iteration without any shared clock or lock.
"""

import asyncio
import logging
import math
import time
from typing import Awaitable, Callable, Optional, Set

from course.elements import CancelToken


logger = logging.getLogger(__name__)

# Host frame interval
HEARTBEAT = 1 / 60
# Interval between tween updates
TWEEN_STEP = 0.05


class MonotonicClock:
    """Wall clock used outside tests."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


def linear(alpha: float) -> float:
    return alpha


def sine_in_out(alpha: float) -> float:
    return -(math.cos(math.pi * alpha) - 1) / 2


async def hold(clock, token: CancelToken, seconds: float) -> bool:
    """Sleep, then report whether the owner is still alive."""
    await clock.sleep(seconds)
    return token.active


async def tween(
    clock,
    token: CancelToken,
    apply: Callable[[float], None],
    duration: float,
    easing: Callable[[float], float] = linear,
    step: float = TWEEN_STEP,
) -> bool:
    """Drive ``apply(eased_alpha)`` from 0 to 1 over ``duration``.

    Returns False as soon as the token is revoked; ``apply`` is never
    called after that.
    """
    elapsed = 0.0
    while elapsed < duration:
        if not token.active:
            return False
        dt = min(step, duration - elapsed)
        await clock.sleep(dt)
        elapsed += dt
        if not token.active:
            return False
        apply(easing(min(1.0, elapsed / duration)))
    return token.active


class MotionRunner:
    """Spawns and tracks element loops.

    A loop that raises is logged and stopped; the failure never reaches
    the phase driver or any other loop.
    """

    def __init__(self, clock=None):
        self.clock = clock or MonotonicClock()
        self._tasks: Set[asyncio.Task] = set()
        self.failures = 0

    def spawn(self, name: str, coro: Awaitable[None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self._guard(name, coro), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, name: str, coro: Awaitable[None]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failures += 1
            logger.exception("Motion loop %s failed, stopping it", name)

    @property
    def active_count(self) -> int:
        return sum(1 for t in self._tasks if not t.done())

    def cancel_all(self) -> None:
        """Hard stop, used on shutdown."""
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait for every tracked loop to exit."""
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=timeout)
