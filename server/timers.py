# server/timers.py
"""Phase countdown for the round driver."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional


@dataclass
class TimerState:
    """Current state of a phase countdown."""
    phase: str
    total_seconds: int
    remaining_seconds: int
    started_at: float
    expired: bool = False


class PhaseTimer:
    """
    Counts a phase down one second at a time.

    The countdown is awaited inline by the round driver, so sleeping here
    is the driver's only suspension point. Per second:
    - ``on_tick(remaining)`` is awaited (status broadcast)
    - the clock sleeps one second
    - ``after_tick()`` is awaited (queued events are drained)
    """

    def __init__(
        self,
        clock,
        on_tick: Optional[Callable[[int], Awaitable[None]]] = None,
        after_tick: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.clock = clock
        self.on_tick = on_tick
        self.after_tick = after_tick
        self._state: Optional[TimerState] = None
        self._cancelled = False

    @property
    def state(self) -> Optional[TimerState]:
        return self._state

    @property
    def remaining(self) -> int:
        if self._state:
            return self._state.remaining_seconds
        return 0

    async def run(self, phase: str, seconds: int) -> TimerState:
        """Count ``seconds`` down to zero."""
        self._cancelled = False
        state = TimerState(
            phase=phase,
            total_seconds=seconds,
            remaining_seconds=max(0, seconds),
            started_at=self.clock.now(),
        )
        self._state = state

        while state.remaining_seconds > 0 and not self._cancelled:
            if self.on_tick:
                await self.on_tick(state.remaining_seconds)
            await self.clock.sleep(1)
            state.remaining_seconds -= 1
            if self.after_tick:
                await self.after_tick()

        state.expired = not self._cancelled
        return state

    def cancel(self) -> None:
        """Stop the countdown after the current second."""
        self._cancelled = True
