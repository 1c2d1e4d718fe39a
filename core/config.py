"""Configuration constants for the drill gauntlet."""

MODES = ('translation', 'listening')
DEFAULT_MODE = 'translation'

# Ratings
DEFAULT_RATING = 1200
LEGACY_TRANSLATION_RATING = 600  # Flat legacy records without elo_rating

# Difficulty tiers: tier -> representative rating midpoint
MIN_TIER = 1
MAX_TIER = 9
DIFFICULTY_TIERS = {tier: 200 + 400 * (tier - MIN_TIER) for tier in range(MIN_TIER, MAX_TIER + 1)}

# Rating engine
K_FACTOR = 40
STREAK_K_MULTIPLIER = 1.25
STREAK_K_THRESHOLD = 2        # Pre-attempt streak needed for the boosted K
SUCCESS_SCORE = 9             # Raw score counted as a success
SCORE_FLOOR = 3               # Raw scores at or below this are total failure
SCORE_SPAN = 7                # SCORE_FLOOR + SCORE_SPAN is a perfect score
STREAK_BONUS_THRESHOLD = 3
STREAK_BONUS = 2

# Rank ladder (title, minimum rating)
RANKS = [
    ('Novice', 0),
    ('Bronze', 1000),
    ('Silver', 1400),
    ('Gold', 1800),
    ('Platinum', 2200),
    ('Master', 2500),
]

# Encounter selection
BOSS_PROBABILITY = 0.02
WAGER_PROBABILITY = 0.07      # Cumulative threshold, listening only
BOSS_KINDS = ('blind', 'lightning', 'echo', 'reverser', 'reaper', 'roulette', 'roulette_execution')
BOSS_WEIGHTS = {
    'translation': [('reverser', 0.40), ('lightning', 0.30), ('reaper', 0.30)],
    'listening': [('blind', 0.30), ('echo', 0.25), ('lightning', 0.25), ('reaper', 0.20)],
}

# Reaper boss
REAPER_HP = 3
REAPER_VICTORY_REWARD = 50
REAPER_DEFEAT_PENALTY = -50

# Wager
WAGER_TIERS = ('safe', 'risky', 'madness')
WAGER_BASE_WIN = {'risky': 60, 'madness': 150}
WAGER_BASE_LOSS = {'risky': -20, 'madness': -50}
WAGER_WIN_MULTIPLIER = 2.5
WAGER_LOSS_MULTIPLIER = 2
MAX_DOUBLE_DOWN = 2

# Fuse timer
FUSE_TICK_MS = 100
LIGHTNING_FUSE_TICKS = 300    # 30 seconds
WAGER_FUSE_TICKS = 450        # 45 seconds
TIMEOUT_PENALTY_LIGHT = -20   # Lightning boss or risky wager
TIMEOUT_PENALTY_HEAVY = -50   # Madness wager and anything else

# Delay before a death/defeat/timeout clears the encounter
TEARDOWN_DELAY_SECONDS = 3.0

# Fever and loot (cosmetic)
FEVER_COMBO_THRESHOLD = 3
LOOT_CHANCE = 0.2
FEVER_LOOT_CHANCE = 0.5

# Roulette
ROULETTE_CHAMBERS = 6
# bullets loaded -> (survive bonus, jackpot multiplier)
GREED_TABLE = {
    0: (0, 0),
    1: (10, 2),
    2: (25, 3),
    3: (50, 5),
    4: (100, 8),
    5: (200, 15),
    6: (0, 50),
}
ROULETTE_SPIN_SECONDS = 2.0
ROULETTE_SLOWMO_SECONDS = 1.5
ROULETTE_DEATH_REVEAL_SECONDS = 2.0
ROULETTE_SURVIVE_REVEAL_SECONDS = 1.5
