"""
Scheduling constants.

Static values used by the scheduler, queue builder and card helpers.
No runtime configuration here; tunable values live in config.py.
"""
from typing import Tuple

# Time units. Intervals are persisted in minutes; user-facing review
# configuration speaks in days.
MINUTES_PER_HOUR: int = 60
MINUTES_PER_DAY: int = 24 * MINUTES_PER_HOUR  # 1440
DAYS_PER_MONTH: int = 30
DAYS_PER_YEAR: int = 365

# Ease factor bounds and adjustments.
MIN_EASE_FACTOR: float = 1.3
DEFAULT_EASE_FACTOR: float = 2.5
EASE_PENALTY_AGAIN: float = 0.2
EASE_PENALTY_HARD: float = 0.15
EASE_BONUS_EASY: float = 0.15

# Learning-step ladder.
HARD_STEP_FACTOR: float = 1.5
# Relapsed review items come back after this fixed step, not the ladder.
RELEARNING_STEP_MINUTES: float = 10
LAPSE_INTERVAL_FACTOR: float = 0.5
LAPSE_MIN_INTERVAL_DAYS: float = 1

# A review item whose interval reaches this many days is mature.
MATURE_INTERVAL_DAYS: float = 21

# Default algorithm configuration.
DEFAULT_LEARNING_STEPS: Tuple[float, ...] = (1, 10)
DEFAULT_GRADUATING_INTERVAL: float = 1
DEFAULT_EASY_BONUS: float = 1.3
DEFAULT_HARD_MULTIPLIER: float = 1.2
DEFAULT_INTERVAL_MULTIPLIER: float = 1.0
DEFAULT_MAX_INTERVAL: float = 365
# Upper bound for any configured interval, in days (about a century).
INTERVAL_LIMIT_DAYS: float = 36_500
DEFAULT_NEW_ITEMS_PER_DAY: int = 20
DEFAULT_REVIEWS_PER_DAY: int = 200

# Study queue.
NEW_ITEM_INTERLEAVE_EVERY: int = 10
REINSERT_MIN_OFFSET: int = 8
REINSERT_MAX_OFFSET: int = 12

# Card content limits.
MAX_CARD_SIDE_LENGTH: int = 10_000
# Highest cloze slot number a template may use; each slot becomes an item.
MAX_CLOZE_SLOT: int = 100
