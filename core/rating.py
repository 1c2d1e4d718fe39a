"""Elo-style rating engine.

Everything here is a pure function of its arguments. A drill tier plays the
role of the opponent: its rating midpoint goes into the logistic expected
score, and the raw 0-10 score is rescaled onto 0-1 so that anything at or
below 3 counts as a total miss and 10 as a perfect answer.
"""

from dataclasses import dataclass

from .config import (
    DIFFICULTY_TIERS, K_FACTOR, STREAK_K_MULTIPLIER, STREAK_K_THRESHOLD,
    SUCCESS_SCORE, SCORE_FLOOR, SCORE_SPAN, STREAK_BONUS_THRESHOLD, STREAK_BONUS,
    RANKS
)
from .models import SkillProfile
from .utils import clamp, round_half_up


@dataclass(frozen=True)
class RatingResult:
    """Outcome of folding one attempt into a SkillProfile."""

    delta: int
    profile: SkillProfile
    success: bool
    rated: bool = True
    difficulty_rating: int | None = None
    expected: float | None = None
    normalized: float | None = None
    k_factor: int = K_FACTOR
    streak_boosted: bool = False
    base_change: int = 0
    bonus_change: int = 0
    overridden: bool = False

    def to_dict(self) -> dict:
        return {
            'delta': self.delta,
            'rating': self.profile.rating,
            'streak': self.profile.streak,
            'max_rating': self.profile.max_rating,
            'success': self.success,
            'rated': self.rated,
            'overridden': self.overridden,
            'breakdown': {
                'difficulty_rating': self.difficulty_rating,
                'expected': self.expected,
                'normalized': self.normalized,
                'k_factor': self.k_factor,
                'streak_boosted': self.streak_boosted,
                'base_change': self.base_change,
                'bonus_change': self.bonus_change
            }
        }


def difficulty_rating(tier: int) -> int:
    if tier not in DIFFICULTY_TIERS:
        raise ValueError(f"unknown difficulty tier: {tier}")
    return DIFFICULTY_TIERS[tier]


def tier_for_rating(rating: int) -> int:
    """Tier whose midpoint is closest to `rating`; ties go to the lower tier."""
    return min(DIFFICULTY_TIERS, key=lambda tier: (abs(DIFFICULTY_TIERS[tier] - rating), tier))


def expected_score(rating: float, opponent_rating: float) -> float:
    return 1 / (1 + 10 ** ((opponent_rating - rating) / 400))


def normalize_score(raw_score: float) -> float:
    return clamp((raw_score - SCORE_FLOOR) / SCORE_SPAN, 0.0, 1.0)


def is_success(raw_score: float) -> bool:
    return raw_score >= SUCCESS_SCORE


def next_streak(streak: int, raw_score: float) -> int:
    return streak + 1 if is_success(raw_score) else 0


def rate_attempt(profile: SkillProfile, tier: int, raw_score: float) -> RatingResult:
    """Apply the normal rating path for one scored attempt."""
    opponent = difficulty_rating(tier)
    expected = expected_score(profile.rating, opponent)
    normalized = normalize_score(raw_score)
    boosted = profile.streak >= STREAK_K_THRESHOLD
    effective_k = K_FACTOR * STREAK_K_MULTIPLIER if boosted else K_FACTOR
    gap = normalized - expected

    delta = round_half_up(effective_k * gap)
    streak = next_streak(profile.streak, raw_score)
    if is_success(raw_score) and streak >= STREAK_BONUS_THRESHOLD:
        delta += STREAK_BONUS

    return RatingResult(
        delta=delta,
        profile=profile.with_rating(profile.rating + delta, streak),
        success=is_success(raw_score),
        difficulty_rating=opponent,
        expected=expected,
        normalized=normalized,
        streak_boosted=boosted,
        base_change=round_half_up(K_FACTOR * gap),
        bonus_change=round_half_up((effective_k - K_FACTOR) * gap)
    )


def apply_override(profile: SkillProfile, delta: int, success: bool,
                   reset_streak: bool = False) -> RatingResult:
    """Replace the normal delta with an encounter-supplied one.

    The streak still follows the success rule; `reset_streak` zeroes it
    regardless (defeats, lost wagers, fuse timeouts).
    """
    streak = profile.streak + 1 if success else 0
    if reset_streak:
        streak = 0
    return RatingResult(
        delta=int(delta),
        profile=profile.with_rating(profile.rating + int(delta), streak),
        success=success,
        overridden=True
    )


def unrated(profile: SkillProfile, raw_score: float) -> RatingResult:
    """Result for a practice replay of an already-rated drill."""
    return RatingResult(delta=0, profile=profile, success=is_success(raw_score), rated=False)


def rank_for(rating: int) -> dict:
    """Rank title for a rating plus progress towards the next rank."""
    index = 0
    for i, (_, floor) in enumerate(RANKS):
        if rating >= floor:
            index = i
    title, floor = RANKS[index]
    if index + 1 < len(RANKS):
        next_title, next_floor = RANKS[index + 1]
        progress = min(100.0, (rating - floor) / (next_floor - floor) * 100)
        distance = next_floor - rating
    else:
        next_title, progress, distance = None, 100.0, 0
    return {
        'title': title,
        'min': floor,
        'next_title': next_title,
        'progress': progress,
        'distance_to_next': distance
    }
