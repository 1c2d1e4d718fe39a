from .models import SkillProfile, ProfileBook, Drill, Score, Attempt
from .interfaces import AIProvider, Storage
from .errors import GauntletError, GenerationError, DrillCancelled, SessionError, RouletteError
from .encounters import NO_ENCOUNTER, BossEncounter, WagerEncounter, select_encounter, resolve_attempt
from .rating import rate_attempt, rank_for, tier_for_rating
from .roulette import RouletteSession, greed_for
from .session import SessionSnapshot, AttemptOutcome
from .orchestrator import SessionOrchestrator, CancellationToken
from .config import (
    MODES, DEFAULT_RATING, MIN_TIER, MAX_TIER, DIFFICULTY_TIERS,
    K_FACTOR, SUCCESS_SCORE, TEARDOWN_DELAY_SECONDS
)

__all__ = [
    'SkillProfile', 'ProfileBook', 'Drill', 'Score', 'Attempt',
    'AIProvider', 'Storage',
    'GauntletError', 'GenerationError', 'DrillCancelled', 'SessionError', 'RouletteError',
    'NO_ENCOUNTER', 'BossEncounter', 'WagerEncounter', 'select_encounter', 'resolve_attempt',
    'rate_attempt', 'rank_for', 'tier_for_rating',
    'RouletteSession', 'greed_for',
    'SessionSnapshot', 'AttemptOutcome',
    'SessionOrchestrator', 'CancellationToken',
    'MODES', 'DEFAULT_RATING', 'MIN_TIER', 'MAX_TIER', 'DIFFICULTY_TIERS',
    'K_FACTOR', 'SUCCESS_SCORE', 'TEARDOWN_DELAY_SECONDS'
]
