"""Russian roulette mini-game.

The player loads any number of the six chambers, spins, and fires once.
Surviving pays a bonus that grows with the number of bullets loaded; dying
sends the player into an execution boss carrying the jackpot multiplier.
"""

import logging
import random
from dataclasses import dataclass

from .config import (
    GREED_TABLE, ROULETTE_CHAMBERS, ROULETTE_SPIN_SECONDS, ROULETTE_SLOWMO_SECONDS,
    ROULETTE_DEATH_REVEAL_SECONDS, ROULETTE_SURVIVE_REVEAL_SECONDS
)
from .errors import RouletteError

logger = logging.getLogger(__name__)

DIED = 'died'
SURVIVED = 'survived'

# Seconds the presentation layer holds each beat
TIMINGS = {
    'spinning': ROULETTE_SPIN_SECONDS,
    'slowmo': ROULETTE_SLOWMO_SECONDS,
    'reveal_died': ROULETTE_DEATH_REVEAL_SECONDS,
    'reveal_survived': ROULETTE_SURVIVE_REVEAL_SECONDS,
}


@dataclass(frozen=True)
class RouletteResult:
    outcome: str
    bullet_count: int
    survive_bonus: int
    jackpot_multiplier: int

    @property
    def died(self) -> bool:
        return self.outcome == DIED

    @property
    def forced_kind(self) -> str:
        """Boss the next drill is forced into."""
        return 'roulette_execution' if self.died else 'roulette'

    def to_dict(self) -> dict:
        return {
            'outcome': self.outcome,
            'bullet_count': self.bullet_count,
            'survive_bonus': self.survive_bonus,
            'jackpot_multiplier': self.jackpot_multiplier,
            'forced_kind': self.forced_kind
        }


def greed_for(bullets: int) -> tuple:
    """(survive bonus, jackpot multiplier) for a bullet count."""
    if bullets not in GREED_TABLE:
        raise ValueError(f"bullet count must be between 0 and {ROULETTE_CHAMBERS}, got {bullets}")
    return GREED_TABLE[bullets]


def quick_roulette_kind(rng=None) -> str:
    """One bullet, one spin: the shortcut used by the debug trigger."""
    rng = rng or random
    return 'roulette_execution' if rng.randrange(ROULETTE_CHAMBERS) == 0 else 'roulette'


class RouletteSession:
    def __init__(self, rng=None):
        self.rng = rng or random.Random()
        self.chambers = [False] * ROULETTE_CHAMBERS
        self.active_chamber_index = None
        self.stage = 'intro'
        self._result = None

    def _require(self, *stages):
        if self.stage not in stages:
            raise RouletteError(f"cannot do that while {self.stage}; expected {', '.join(stages)}")

    def start_loading(self):
        self._require('intro')
        self.stage = 'loading'

    def toggle_chamber(self, index: int) -> bool:
        self._require('loading')
        if not 0 <= index < ROULETTE_CHAMBERS:
            raise RouletteError(f"chamber index out of range: {index}")
        self.chambers[index] = not self.chambers[index]
        return self.chambers[index]

    @property
    def bullet_count(self) -> int:
        return sum(self.chambers)

    @property
    def greed(self) -> tuple:
        return greed_for(self.bullet_count)

    def spin(self, forced_index: int | None = None) -> None:
        """Commit the chamber that will fire. Chosen once, never re-rolled."""
        self._require('loading')
        if self.bullet_count == 0:
            raise RouletteError("load at least one bullet before spinning")
        if forced_index is not None:
            if not 0 <= forced_index < ROULETTE_CHAMBERS:
                raise RouletteError(f"chamber index out of range: {forced_index}")
            self.active_chamber_index = forced_index
        else:
            self.active_chamber_index = self.rng.randrange(ROULETTE_CHAMBERS)
        self.stage = 'spinning'

    def advance(self) -> str:
        if self.stage == 'spinning':
            self.stage = 'slowmo'
        elif self.stage == 'slowmo':
            self.stage = 'aiming'
        else:
            raise RouletteError(f"cannot advance from {self.stage}")
        return self.stage

    def fire(self) -> RouletteResult:
        self._require('aiming')
        bonus, multiplier = self.greed
        died = self.chambers[self.active_chamber_index]
        self._result = RouletteResult(
            outcome=DIED if died else SURVIVED,
            bullet_count=self.bullet_count,
            survive_bonus=0 if died else bonus,
            jackpot_multiplier=multiplier
        )
        self.stage = 'fired'
        logger.info(f"Roulette fired with {self.bullet_count} bullets: {self._result.outcome}")
        return self._result

    def take_result(self) -> RouletteResult | None:
        """Hand the result over once; later calls return None."""
        result, self._result = self._result, None
        return result

    def to_dict(self) -> dict:
        bonus, multiplier = self.greed
        return {
            'stage': self.stage,
            'chambers': list(self.chambers),
            'bullet_count': self.bullet_count,
            'survive_bonus': bonus,
            'jackpot_multiplier': multiplier,
            # Hidden until the shot is fired
            'active_chamber_index': self.active_chamber_index if self.stage == 'fired' else None,
            'timings': dict(TIMINGS)
        }
