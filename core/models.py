"""Domain models for the drill gauntlet."""

import time
import uuid
from dataclasses import dataclass, field, replace

from .config import (
    DEFAULT_RATING, LEGACY_TRANSLATION_RATING, MODES, MIN_TIER, MAX_TIER, SUCCESS_SCORE
)
from .errors import GenerationError


@dataclass(frozen=True)
class SkillProfile:
    """Rating state for one mode of one user."""

    rating: int = DEFAULT_RATING
    streak: int = 0
    max_rating: int = DEFAULT_RATING

    def with_rating(self, rating: int, streak: int) -> 'SkillProfile':
        rating = max(0, int(rating))
        return replace(self, rating=rating, streak=max(0, int(streak)),
                       max_rating=max(self.max_rating, rating))

    def to_dict(self) -> dict:
        return {
            'rating': self.rating,
            'streak': self.streak,
            'max_rating': self.max_rating
        }

    @classmethod
    def from_dict(cls, data: dict, default_rating: int = DEFAULT_RATING) -> 'SkillProfile':
        rating = max(0, int(data.get('rating', default_rating)))
        streak = max(0, int(data.get('streak', 0)))
        max_rating = max(rating, int(data.get('max_rating', rating)))
        return cls(rating=rating, streak=streak, max_rating=max_rating)


class ProfileBook:
    """Persisted per-user document: one SkillProfile per mode."""

    def __init__(self, profiles: dict | None = None, last_practice: float | None = None):
        self.profiles = {mode: SkillProfile() for mode in MODES}
        if profiles:
            self.profiles.update(profiles)
        self.last_practice = last_practice

    def get(self, mode: str) -> SkillProfile:
        if mode not in self.profiles:
            raise ValueError(f"unknown mode: {mode}")
        return self.profiles[mode]

    def put(self, mode: str, profile: SkillProfile) -> None:
        if mode not in self.profiles:
            raise ValueError(f"unknown mode: {mode}")
        self.profiles[mode] = profile
        self.last_practice = time.time()

    def to_dict(self) -> dict:
        return {
            'profiles': {mode: profile.to_dict() for mode, profile in self.profiles.items()},
            'last_practice': self.last_practice
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> 'ProfileBook':
        if not data:
            return cls()
        if 'profiles' not in data:
            return cls._from_legacy(data)
        profiles = {}
        for mode, entry in data['profiles'].items():
            if mode in MODES and isinstance(entry, dict):
                profiles[mode] = SkillProfile.from_dict(entry)
        return cls(profiles, data.get('last_practice'))

    @classmethod
    def _from_legacy(cls, data: dict) -> 'ProfileBook':
        """Migrate the old flat record (elo_rating, listening_elo, ...)."""
        translation = SkillProfile.from_dict({
            'rating': data.get('elo_rating', LEGACY_TRANSLATION_RATING),
            'streak': data.get('streak_count', 0),
            'max_rating': data.get('max_elo', 0)
        })
        listening = SkillProfile.from_dict({
            'rating': data.get('listening_elo', DEFAULT_RATING),
            'streak': data.get('listening_streak', 0),
            'max_rating': data.get('listening_max_elo', 0)
        })
        last_practice = data.get('last_practice')
        # Legacy timestamps were milliseconds
        if isinstance(last_practice, (int, float)) and last_practice > 1e11:
            last_practice = last_practice / 1000
        return cls({'translation': translation, 'listening': listening}, last_practice)


@dataclass(frozen=True)
class Drill:
    """A generated sentence pair. Each instance is rated at most once."""

    source_text: str
    reference_answer: str
    mode: str
    tier: int
    vocab_hints: tuple = ()
    encounter_kind: str | None = None
    drill_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_response(cls, data: dict, mode: str, tier: int,
                      encounter_kind: str | None = None) -> 'Drill':
        """Validate a drill service payload. Raises GenerationError when malformed."""
        if not isinstance(data, dict):
            raise GenerationError("drill response is not an object")
        source = data.get('source_text')
        reference = data.get('reference_answer')
        if not isinstance(source, str) or not source.strip():
            raise GenerationError("drill response has no source_text")
        if not isinstance(reference, str) or not reference.strip():
            raise GenerationError("drill response has no reference_answer")
        hints = data.get('vocab_hints') or []
        if not isinstance(hints, list):
            hints = [hints]
        return cls(
            source_text=source.strip(),
            reference_answer=reference.strip(),
            mode=mode,
            tier=tier,
            vocab_hints=tuple(str(h) for h in hints if h),
            encounter_kind=encounter_kind
        )

    def to_dict(self) -> dict:
        return {
            'drill_id': self.drill_id,
            'source_text': self.source_text,
            'reference_answer': self.reference_answer,
            'vocab_hints': list(self.vocab_hints),
            'mode': self.mode,
            'tier': self.tier,
            'encounter_kind': self.encounter_kind
        }


@dataclass(frozen=True)
class Score:
    """Scoring service verdict. Only `score` feeds the rating math."""

    score: float
    feedback: tuple = ()
    improved_version: str | None = None
    segments: tuple | None = None

    @classmethod
    def from_response(cls, data: dict) -> 'Score':
        if not isinstance(data, dict):
            raise GenerationError("score response is not an object")
        raw = data.get('score')
        if isinstance(raw, bool):
            raise GenerationError(f"score response has invalid score: {raw!r}")
        if not isinstance(raw, (int, float)):
            try:
                raw = float(raw)
            except (TypeError, ValueError):
                raise GenerationError(f"score response has invalid score: {data.get('score')!r}")
        if not 0 <= raw <= 10:
            raise GenerationError(f"score out of range: {raw}")
        feedback = data.get('feedback') or []
        if isinstance(feedback, str):
            feedback = [feedback]
        segments = data.get('segments')
        return cls(
            score=float(raw),
            feedback=tuple(str(f) for f in feedback),
            improved_version=data.get('improved_version'),
            segments=tuple(segments) if isinstance(segments, list) else None
        )

    def to_dict(self) -> dict:
        return {
            'score': self.score,
            'feedback': list(self.feedback),
            'improved_version': self.improved_version,
            'segments': list(self.segments) if self.segments is not None else None
        }


@dataclass(frozen=True)
class Attempt:
    """One scored submission, as seen by the encounter state machine."""

    raw_score: float
    mode: str
    tier: int
    encounter: object

    @property
    def success(self) -> bool:
        return self.raw_score >= SUCCESS_SCORE


def validate_tier(tier: int) -> int:
    tier = int(tier)
    if not MIN_TIER <= tier <= MAX_TIER:
        raise ValueError(f"difficulty tier must be between {MIN_TIER} and {MAX_TIER}, got {tier}")
    return tier
