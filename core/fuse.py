"""Countdown fuse for timed encounters.

`tick` is a pure step function; the orchestrator owns the clock and calls it
every FUSE_TICK_MS. `just_expired` turns the level into an edge so the
expiry penalty is applied exactly once.
"""

from dataclasses import dataclass, replace

from .config import FUSE_TICK_MS

IDLE = 'idle'
RUNNING = 'running'
EXPIRED = 'expired'
CANCELLED = 'cancelled'


@dataclass(frozen=True)
class FuseTimer:
    remaining: float = 100.0
    duration_ticks: int = 0
    state: str = IDLE

    @property
    def running(self) -> bool:
        return self.state == RUNNING

    def to_dict(self) -> dict:
        return {
            'remaining': self.remaining,
            'duration_ticks': self.duration_ticks,
            'state': self.state
        }


def start_fuse(duration_ticks: int) -> FuseTimer:
    if duration_ticks <= 0:
        raise ValueError(f"fuse duration must be positive, got {duration_ticks}")
    return FuseTimer(remaining=100.0, duration_ticks=duration_ticks, state=RUNNING)


def tick(timer: FuseTimer, elapsed_ms: float = FUSE_TICK_MS) -> FuseTimer:
    if timer.state != RUNNING:
        return timer
    remaining = timer.remaining - (elapsed_ms / FUSE_TICK_MS) * (100 / timer.duration_ticks)
    if remaining <= 0:
        return replace(timer, remaining=0.0, state=EXPIRED)
    return replace(timer, remaining=remaining)


def just_expired(before: FuseTimer, after: FuseTimer) -> bool:
    return before.state != EXPIRED and after.state == EXPIRED


def cancel(timer: FuseTimer) -> FuseTimer:
    if timer.state == IDLE:
        return timer
    return FuseTimer(remaining=100.0, duration_ticks=0, state=CANCELLED)
