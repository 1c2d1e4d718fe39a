"""Encounter selection and the encounter state machine.

An encounter is a session modifier layered on top of plain drilling. At most
one is live at a time: a boss fight, a wager, or nothing. Attempts made
while an encounter is live are resolved here first; the result is an
optional rating override that replaces the normal rating delta.
"""

import logging
import random
from dataclasses import dataclass, replace
from typing import ClassVar

from .config import (
    MODES, BOSS_KINDS, BOSS_WEIGHTS, BOSS_PROBABILITY, WAGER_PROBABILITY,
    REAPER_HP, REAPER_VICTORY_REWARD, REAPER_DEFEAT_PENALTY,
    WAGER_TIERS, WAGER_BASE_WIN, WAGER_BASE_LOSS, WAGER_WIN_MULTIPLIER,
    WAGER_LOSS_MULTIPLIER, MAX_DOUBLE_DOWN,
    LIGHTNING_FUSE_TICKS, WAGER_FUSE_TICKS, TIMEOUT_PENALTY_LIGHT, TIMEOUT_PENALTY_HEAVY
)
from .errors import SessionError
from .models import Attempt
from .utils import round_half_up

logger = logging.getLogger(__name__)

# Event names observed by the presentation layer
BOSS_HIT = 'boss_hit'
BOSS_DEFEATED = 'boss_defeated'
PLAYER_HIT = 'player_hit'
PLAYER_DEATH = 'player_death'
WAGER_WON = 'wager_won'
WAGER_LOST = 'wager_lost'
DOUBLE_DOWN_OFFERED = 'double_down_offered'
TIMEOUT = 'timeout'


@dataclass(frozen=True)
class NoEncounter:
    active: ClassVar[bool] = False
    ending: ClassVar[bool] = False

    def to_dict(self) -> dict:
        return {'type': 'none'}


NO_ENCOUNTER = NoEncounter()


@dataclass(frozen=True)
class BossEncounter:
    kind: str
    intro_acknowledged: bool = False
    hp: int | None = None
    max_hp: int | None = None
    player_hp: int | None = None
    player_max_hp: int | None = None
    jackpot_multiplier: int | None = None
    ending: bool = False
    active: ClassVar[bool] = True

    def to_dict(self) -> dict:
        return {
            'type': 'boss',
            'kind': self.kind,
            'intro_acknowledged': self.intro_acknowledged,
            'hp': self.hp,
            'max_hp': self.max_hp,
            'player_hp': self.player_hp,
            'player_max_hp': self.player_max_hp,
            'jackpot_multiplier': self.jackpot_multiplier,
            'ending': self.ending
        }


@dataclass(frozen=True)
class WagerEncounter:
    tier: str | None = None
    double_down_count: int = 0
    intro_acknowledged: bool = False
    awaiting_double_down: bool = False
    ending: bool = False
    active: ClassVar[bool] = True

    def to_dict(self) -> dict:
        return {
            'type': 'wager',
            'tier': self.tier,
            'double_down_count': self.double_down_count,
            'intro_acknowledged': self.intro_acknowledged,
            'awaiting_double_down': self.awaiting_double_down,
            'ending': self.ending
        }


@dataclass(frozen=True)
class EncounterOutcome:
    """What an attempt (or a fuse expiry) did to the live encounter."""

    rating_override: int | None
    encounter: object
    events: tuple = ()
    reset_streak: bool = False
    teardown: bool = False


def new_boss(kind: str, intro_acknowledged: bool = False,
             jackpot_multiplier: int | None = None) -> BossEncounter:
    if kind not in BOSS_KINDS:
        raise ValueError(f"unknown boss kind: {kind}")
    if kind == 'reaper':
        return BossEncounter(kind, intro_acknowledged, hp=REAPER_HP, max_hp=REAPER_HP,
                             player_hp=REAPER_HP, player_max_hp=REAPER_HP)
    return BossEncounter(kind, intro_acknowledged, jackpot_multiplier=jackpot_multiplier)


def _pick_boss_kind(mode: str, roll: float) -> str:
    table = BOSS_WEIGHTS[mode]
    total = sum(weight for _, weight in table)
    cumulative = 0.0
    for kind, weight in table:
        cumulative += weight / total
        if roll < cumulative:
            return kind
    return table[-1][0]


def select_encounter(mode: str, current=NO_ENCOUNTER, rng: random.Random | None = None,
                     forced_kind: str | None = None, forced_by_roulette: bool = False,
                     jackpot_multiplier: int | None = None):
    """Decide which encounter the next drill runs under.

    A live encounter is returned unchanged. A forced kind (debug trigger or
    roulette outcome) skips the roll; roulette-forced bosses arrive with the
    intro already acknowledged since the mini-game played its own.
    """
    if mode not in MODES:
        raise ValueError(f"unknown mode: {mode}")
    if current.active:
        if forced_kind:
            logger.warning(f"Ignoring forced {forced_kind} boss while an encounter is live")
        return current
    if forced_kind:
        return new_boss(forced_kind, intro_acknowledged=forced_by_roulette,
                        jackpot_multiplier=jackpot_multiplier)

    rng = rng or random
    roll = rng.random()
    if roll < BOSS_PROBABILITY:
        return new_boss(_pick_boss_kind(mode, rng.random()))
    if roll < WAGER_PROBABILITY and mode == 'listening':
        return WagerEncounter()
    return NO_ENCOUNTER


def acknowledge_intro(encounter):
    if not encounter.active:
        raise SessionError("no encounter to acknowledge")
    return replace(encounter, intro_acknowledged=True)


def choose_wager_tier(encounter, tier: str):
    """Lock in a wager tier. `safe` walks away and ends the encounter."""
    if tier not in WAGER_TIERS:
        raise ValueError(f"unknown wager tier: {tier}")
    if not isinstance(encounter, WagerEncounter):
        raise SessionError("no wager in progress")
    if not encounter.intro_acknowledged:
        raise SessionError("wager intro has not been acknowledged")
    if encounter.tier is not None:
        raise SessionError(f"wager tier already chosen: {encounter.tier}")
    if tier == 'safe':
        return NO_ENCOUNTER
    return replace(encounter, tier=tier)


def resolve_double_down(encounter, accept: bool):
    if not isinstance(encounter, WagerEncounter) or not encounter.awaiting_double_down:
        raise SessionError("no double down on offer")
    if not accept:
        return NO_ENCOUNTER
    count = encounter.double_down_count + 1
    if count > MAX_DOUBLE_DOWN:
        logger.warning(f"Double down count {count} clamped to {MAX_DOUBLE_DOWN}")
        count = MAX_DOUBLE_DOWN
    return replace(encounter, double_down_count=count, awaiting_double_down=False)


def wager_payout(tier: str, double_down_count: int) -> int:
    return round_half_up(WAGER_BASE_WIN[tier] * WAGER_WIN_MULTIPLIER ** double_down_count)


def wager_loss(tier: str, double_down_count: int) -> int:
    return WAGER_BASE_LOSS[tier] * WAGER_LOSS_MULTIPLIER ** double_down_count


def _resolve_reaper(boss: BossEncounter, success: bool) -> EncounterOutcome:
    if success:
        hp = boss.hp - 1
        if hp < 0:
            logger.warning(f"Reaper hp would go negative ({hp}), clamping to 0")
            hp = 0
        if hp == 0:
            return EncounterOutcome(REAPER_VICTORY_REWARD, NO_ENCOUNTER, (BOSS_DEFEATED,))
        return EncounterOutcome(0, replace(boss, hp=hp), (BOSS_HIT,))

    player_hp = boss.player_hp - 1
    if player_hp < 0:
        logger.warning(f"Player hp would go negative ({player_hp}), clamping to 0")
        player_hp = 0
    if player_hp == 0:
        return EncounterOutcome(REAPER_DEFEAT_PENALTY, replace(boss, player_hp=0, ending=True),
                                (PLAYER_DEATH,), reset_streak=True, teardown=True)
    return EncounterOutcome(0, replace(boss, player_hp=player_hp), (PLAYER_HIT,))


def _resolve_wager(wager: WagerEncounter, success: bool) -> EncounterOutcome:
    count = wager.double_down_count
    if count > MAX_DOUBLE_DOWN:
        logger.warning(f"Double down count {count} clamped to {MAX_DOUBLE_DOWN}")
        count = MAX_DOUBLE_DOWN
    if success:
        payout = wager_payout(wager.tier, count)
        if count < MAX_DOUBLE_DOWN:
            offered = replace(wager, double_down_count=count, awaiting_double_down=True)
            return EncounterOutcome(payout, offered, (WAGER_WON, DOUBLE_DOWN_OFFERED))
        return EncounterOutcome(payout, NO_ENCOUNTER, (WAGER_WON,))
    return EncounterOutcome(wager_loss(wager.tier, count), NO_ENCOUNTER, (WAGER_LOST,),
                            reset_streak=True)


def resolve_attempt(encounter, attempt: Attempt) -> EncounterOutcome:
    """Fold one scored attempt into the live encounter.

    `rating_override` is None when the normal rating path applies.
    """
    if not encounter.active:
        return EncounterOutcome(None, encounter)
    if encounter.ending:
        return EncounterOutcome(0, encounter)
    if isinstance(encounter, BossEncounter):
        if encounter.kind == 'reaper':
            return _resolve_reaper(encounter, attempt.success)
        return EncounterOutcome(None, encounter)
    if encounter.tier in ('risky', 'madness') and not encounter.awaiting_double_down:
        return _resolve_wager(encounter, attempt.success)
    return EncounterOutcome(None, encounter)


def fuse_ticks_for(encounter) -> int | None:
    """Fuse length for encounters that run one, else None."""
    if isinstance(encounter, BossEncounter) and encounter.kind == 'lightning':
        return LIGHTNING_FUSE_TICKS
    if isinstance(encounter, WagerEncounter) and encounter.tier in ('risky', 'madness'):
        return WAGER_FUSE_TICKS
    return None


def fuse_eligible(encounter) -> bool:
    if fuse_ticks_for(encounter) is None:
        return False
    if not encounter.intro_acknowledged or encounter.ending:
        return False
    return not getattr(encounter, 'awaiting_double_down', False)


def timeout_penalty(encounter) -> int:
    if isinstance(encounter, BossEncounter) and encounter.kind == 'lightning':
        return TIMEOUT_PENALTY_LIGHT
    if isinstance(encounter, WagerEncounter) and encounter.tier == 'risky':
        return TIMEOUT_PENALTY_LIGHT
    return TIMEOUT_PENALTY_HEAVY


def expire_fuse(encounter) -> EncounterOutcome:
    """The fuse ran out before an answer arrived."""
    return EncounterOutcome(timeout_penalty(encounter), replace(encounter, ending=True),
                            (TIMEOUT,), reset_streak=True, teardown=True)
