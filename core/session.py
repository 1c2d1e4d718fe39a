"""Session state and the pure reducers that move it forward.

A SessionSnapshot is never mutated. Every event the orchestrator sees
(drill arrived, answer scored, fuse ticked, intro dismissed, ...) maps to one
reducer here that returns the next snapshot, plus an AttemptOutcome when the
event resolved an attempt.
"""

import logging
import random
from dataclasses import dataclass, field, replace

from . import encounters
from .config import FEVER_COMBO_THRESHOLD, LOOT_CHANCE, FEVER_LOOT_CHANCE
from .encounters import NO_ENCOUNTER
from .errors import SessionError
from .fuse import EXPIRED, FuseTimer, cancel as cancel_fuse, just_expired, start_fuse, tick as tick_fuse
from .models import Attempt, Drill, Score, SkillProfile
from .rating import RatingResult, apply_override, is_success, rate_attempt, unrated
from .roulette import RouletteResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptOutcome:
    """Everything one resolved attempt (or fuse timeout) produced."""

    delta: int
    rated: bool
    success: bool
    raw_score: float | None = None
    score: Score | None = None
    events: tuple = ()
    rating: RatingResult | None = None
    teardown: bool = False
    loot: dict | None = None

    @property
    def persist(self) -> bool:
        return self.rated

    def to_dict(self) -> dict:
        return {
            'delta': self.delta,
            'rated': self.rated,
            'success': self.success,
            'raw_score': self.raw_score,
            'score': self.score.to_dict() if self.score else None,
            'events': list(self.events),
            'rating': self.rating.to_dict() if self.rating else None,
            'teardown': self.teardown,
            'loot': self.loot
        }


@dataclass(frozen=True)
class SessionSnapshot:
    mode: str
    tier: int
    profile: SkillProfile = field(default_factory=SkillProfile)
    encounter: object = NO_ENCOUNTER
    fuse: FuseTimer = field(default_factory=FuseTimer)
    drill: Drill | None = None
    drill_rated: bool = False
    submitting: bool = False
    combo: int = 0
    fever: bool = False
    last_outcome: AttemptOutcome | None = None
    # Boss requested by a finished roulette, consumed by the next drill
    pending_kind: str | None = None
    pending_jackpot: int | None = None

    def to_dict(self) -> dict:
        return {
            'mode': self.mode,
            'tier': self.tier,
            'profile': self.profile.to_dict(),
            'encounter': self.encounter.to_dict(),
            'fuse': self.fuse.to_dict(),
            'drill': self.drill.to_dict() if self.drill else None,
            'drill_rated': self.drill_rated,
            'submitting': self.submitting,
            'combo': self.combo,
            'fever': self.fever,
            'last_outcome': self.last_outcome.to_dict() if self.last_outcome else None,
            'pending_kind': self.pending_kind
        }


def roll_loot(rng=None, fever: bool = False) -> dict | None:
    """Cosmetic drop for a successful attempt, or None."""
    rng = rng or random
    if rng.random() >= (FEVER_LOOT_CHANCE if fever else LOOT_CHANCE):
        return None
    roll = rng.random()
    if roll > 0.95:
        return {'type': 'theme', 'amount': 1, 'rarity': 'legendary'}
    if roll > 0.70:
        return {'type': 'gem', 'amount': rng.randint(1, 5), 'rarity': 'rare'}
    return {'type': 'exp', 'amount': rng.randint(10, 59), 'rarity': 'common'}


def sync_fuse(snapshot: SessionSnapshot) -> SessionSnapshot:
    """Start or cancel the fuse to match the encounter and drill state."""
    ticks = encounters.fuse_ticks_for(snapshot.encounter)
    wanted = (encounters.fuse_eligible(snapshot.encounter)
              and snapshot.drill is not None and not snapshot.drill_rated)
    if wanted:
        if snapshot.fuse.running or snapshot.fuse.state == EXPIRED:
            return snapshot
        return replace(snapshot, fuse=start_fuse(ticks))
    if snapshot.fuse.state == EXPIRED and snapshot.encounter.ending:
        return snapshot
    return replace(snapshot, fuse=cancel_fuse(snapshot.fuse))


def select_next_encounter(snapshot: SessionSnapshot, rng=None, forced_kind: str | None = None):
    """Candidate encounter for the next drill. Not committed until the drill arrives.

    Returns (encounter, used_pending).
    """
    if forced_kind is None and snapshot.pending_kind and not snapshot.encounter.active:
        candidate = encounters.select_encounter(
            snapshot.mode, snapshot.encounter, rng,
            forced_kind=snapshot.pending_kind, forced_by_roulette=True,
            jackpot_multiplier=snapshot.pending_jackpot
        )
        return candidate, True
    return encounters.select_encounter(snapshot.mode, snapshot.encounter, rng,
                                       forced_kind=forced_kind), False


def begin_drill(snapshot: SessionSnapshot, drill: Drill, encounter,
                clear_pending: bool = False) -> SessionSnapshot:
    """Commit a freshly generated drill and the encounter it was generated for."""
    updated = replace(
        snapshot,
        drill=drill,
        drill_rated=False,
        submitting=False,
        encounter=encounter,
        fuse=FuseTimer()
    )
    if clear_pending:
        updated = replace(updated, pending_kind=None, pending_jackpot=None)
    return sync_fuse(updated)


def begin_submission(snapshot: SessionSnapshot) -> SessionSnapshot:
    if snapshot.drill is None:
        raise SessionError("no drill to answer")
    if snapshot.submitting:
        raise SessionError("a submission is already in flight")
    return replace(snapshot, submitting=True)


def abort_submission(snapshot: SessionSnapshot) -> SessionSnapshot:
    return replace(snapshot, submitting=False)


def _update_combo(snapshot: SessionSnapshot, success: bool, encounter_live: bool) -> tuple:
    if not success:
        return 0, False
    if encounter_live:
        return snapshot.combo, snapshot.fever
    combo = snapshot.combo + 1
    return combo, combo >= FEVER_COMBO_THRESHOLD


def apply_score(snapshot: SessionSnapshot, score: Score, rng=None) -> tuple:
    """Fold a scoring verdict into the session. Returns (snapshot, AttemptOutcome)."""
    if snapshot.drill is None:
        raise SessionError("no drill to score")
    raw = score.score

    if snapshot.encounter.ending:
        outcome = AttemptOutcome(delta=0, rated=False, success=is_success(raw), raw_score=raw, score=score)
        return replace(snapshot, submitting=False, last_outcome=outcome), outcome

    if snapshot.drill_rated:
        result = unrated(snapshot.profile, raw)
        outcome = AttemptOutcome(delta=0, rated=False, success=result.success, raw_score=raw,
                                 score=score, rating=result)
        return replace(snapshot, submitting=False, last_outcome=outcome), outcome

    attempt = Attempt(raw_score=raw, mode=snapshot.mode, tier=snapshot.drill.tier,
                      encounter=snapshot.encounter)
    resolved = encounters.resolve_attempt(snapshot.encounter, attempt)
    if resolved.rating_override is None:
        result = rate_attempt(snapshot.profile, attempt.tier, raw)
    else:
        result = apply_override(snapshot.profile, resolved.rating_override, attempt.success,
                                reset_streak=resolved.reset_streak)

    loot = roll_loot(rng, snapshot.fever) if attempt.success else None
    combo, fever = _update_combo(snapshot, attempt.success, snapshot.encounter.active)
    outcome = AttemptOutcome(
        delta=result.delta,
        rated=True,
        success=attempt.success,
        raw_score=raw,
        score=score,
        events=resolved.events,
        rating=result,
        teardown=resolved.teardown,
        loot=loot
    )
    updated = replace(
        snapshot,
        profile=result.profile,
        encounter=resolved.encounter,
        drill_rated=True,
        submitting=False,
        combo=combo,
        fever=fever,
        last_outcome=outcome
    )
    return sync_fuse(updated), outcome


def apply_tick(snapshot: SessionSnapshot, elapsed_ms: float) -> tuple:
    """Advance the fuse. Returns (snapshot, AttemptOutcome or None on expiry)."""
    if snapshot.submitting or not snapshot.fuse.running:
        return snapshot, None
    before = snapshot.fuse
    after = tick_fuse(before, elapsed_ms)
    if not just_expired(before, after):
        return replace(snapshot, fuse=after), None

    resolved = encounters.expire_fuse(snapshot.encounter)
    result = apply_override(snapshot.profile, resolved.rating_override, success=False,
                            reset_streak=True)
    outcome = AttemptOutcome(
        delta=result.delta,
        rated=True,
        success=False,
        events=resolved.events,
        rating=result,
        teardown=True
    )
    logger.info(f"Fuse expired under {snapshot.encounter.to_dict()}: {result.delta}")
    updated = replace(
        snapshot,
        profile=result.profile,
        encounter=resolved.encounter,
        fuse=after,
        drill_rated=True,
        combo=0,
        fever=False,
        last_outcome=outcome
    )
    return updated, outcome


def acknowledge_intro(snapshot: SessionSnapshot) -> SessionSnapshot:
    return sync_fuse(replace(snapshot, encounter=encounters.acknowledge_intro(snapshot.encounter)))


def choose_wager_tier(snapshot: SessionSnapshot, tier: str) -> SessionSnapshot:
    updated = encounters.choose_wager_tier(snapshot.encounter, tier)
    return sync_fuse(replace(snapshot, encounter=updated))


def resolve_double_down(snapshot: SessionSnapshot, accept: bool) -> SessionSnapshot:
    updated = encounters.resolve_double_down(snapshot.encounter, accept)
    return sync_fuse(replace(snapshot, encounter=updated))


def clear_encounter(snapshot: SessionSnapshot) -> SessionSnapshot:
    return replace(snapshot, encounter=NO_ENCOUNTER, fuse=cancel_fuse(snapshot.fuse))


def apply_roulette_result(snapshot: SessionSnapshot, result: RouletteResult) -> SessionSnapshot:
    """Pay out a survival bonus and queue the boss the next drill is forced into."""
    if snapshot.encounter.active:
        raise SessionError("cannot settle a roulette while an encounter is live")
    profile = snapshot.profile
    if result.survive_bonus:
        profile = profile.with_rating(profile.rating + result.survive_bonus, profile.streak)
    return replace(
        snapshot,
        profile=profile,
        pending_kind=result.forced_kind,
        pending_jackpot=result.jackpot_multiplier if result.died else None
    )
