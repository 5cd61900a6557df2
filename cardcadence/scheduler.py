# cardcadence/scheduler.py

"""
Defines the BaseScheduler abstract class and the step-ladder scheduler.

Scheduling is a pure function of (item, rating, config, now). Nothing here
reads the clock or touches storage; callers inject ``now`` and persist the
result themselves.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from .config import SchedulerConfig
from .constants import (
    DAYS_PER_MONTH,
    DAYS_PER_YEAR,
    EASE_BONUS_EASY,
    EASE_PENALTY_AGAIN,
    EASE_PENALTY_HARD,
    HARD_STEP_FACTOR,
    LAPSE_INTERVAL_FACTOR,
    LAPSE_MIN_INTERVAL_DAYS,
    MATURE_INTERVAL_DAYS,
    MIN_EASE_FACTOR,
    MINUTES_PER_DAY,
    RELEARNING_STEP_MINUTES,
)
from .models import Item, LearningState, Rating, Scheduled, Stepping, ensure_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchedulingResult:
    item: Item
    next_review: datetime


class BaseScheduler(ABC):
    """
    Abstract base class for all schedulers in cardcadence.
    """

    @abstractmethod
    def compute_next_state(
        self, item: Item, rating: Rating, now: datetime
    ) -> SchedulingResult:
        """
        Computes the next state of an item for a new rating.

        Args:
            item: The item in its current state.
            rating: The rating given for the current review.
            now: The UTC timestamp of the current review.

        Returns:
            A SchedulingResult holding the updated item and its next due time.
        """
        pass


def _floor_ease(ease_factor: float) -> float:
    return max(MIN_EASE_FACTOR, ease_factor)


def _maturity(interval_days: float) -> LearningState:
    if interval_days >= MATURE_INTERVAL_DAYS:
        return LearningState.Mature
    return LearningState.Review


def _result(item: Item, now: datetime, delay: timedelta, **changes) -> SchedulingResult:
    next_review = now + delay
    updated = item.evolve(next_review=next_review, updated_at=now, **changes)
    return SchedulingResult(item=updated, next_review=next_review)


def _graduate(
    item: Item, config: SchedulerConfig, now: datetime, easy: bool = False
) -> SchedulingResult:
    interval_days = config.graduating_interval
    ease_factor = item.ease_factor
    if easy:
        interval_days *= config.easy_bonus
        ease_factor += EASE_BONUS_EASY
    return _result(
        item,
        now,
        timedelta(days=interval_days),
        learning_state=LearningState.Review,
        interval=interval_days * MINUTES_PER_DAY,
        ease_factor=ease_factor,
        repetitions=1,
        phase=Scheduled(),
    )


def _schedule_stepping(
    item: Item, rating: Rating, config: SchedulerConfig, now: datetime
) -> SchedulingResult:
    steps = config.learning_steps
    current = item.step_index or 0

    if rating == Rating.Easy:
        return _graduate(item, config, now, easy=True)

    if rating == Rating.Again:
        if not steps:
            return _graduate(item, config, now)
        lapses = item.lapses
        if item.learning_state == LearningState.Learning:
            lapses += 1
        return _result(
            item,
            now,
            timedelta(minutes=steps[0]),
            learning_state=LearningState.Learning,
            ease_factor=_floor_ease(item.ease_factor - EASE_PENALTY_AGAIN),
            repetitions=0,
            lapses=lapses,
            phase=Stepping(index=0),
        )

    if rating == Rating.Hard:
        if current >= len(steps):
            return _graduate(item, config, now)
        return _result(
            item,
            now,
            timedelta(minutes=steps[current] * HARD_STEP_FACTOR),
            learning_state=LearningState.Learning,
            phase=Stepping(index=current),
        )

    next_step = current + 1
    if next_step >= len(steps):
        return _graduate(item, config, now)
    return _result(
        item,
        now,
        timedelta(minutes=steps[next_step]),
        learning_state=LearningState.Learning,
        phase=Stepping(index=next_step),
    )


def _schedule_review(
    item: Item, rating: Rating, config: SchedulerConfig, now: datetime
) -> SchedulingResult:
    current_days = item.interval_days

    if rating == Rating.Again:
        # The halved interval is kept on the item but the next review uses the
        # fixed relearning step; it only matters once the item graduates again.
        decayed_days = max(
            LAPSE_MIN_INTERVAL_DAYS, current_days * LAPSE_INTERVAL_FACTOR
        )
        return _result(
            item,
            now,
            timedelta(minutes=RELEARNING_STEP_MINUTES),
            learning_state=LearningState.Learning,
            ease_factor=_floor_ease(item.ease_factor - EASE_PENALTY_AGAIN),
            repetitions=0,
            lapses=item.lapses + 1,
            interval=decayed_days * MINUTES_PER_DAY,
            phase=Stepping(index=0),
        )

    ease_factor = item.ease_factor
    if rating == Rating.Hard:
        new_days = current_days * config.hard_multiplier
        ease_factor = _floor_ease(ease_factor - EASE_PENALTY_HARD)
    elif rating == Rating.Good:
        new_days = current_days * item.ease_factor * config.interval_multiplier
    else:
        new_days = (
            current_days
            * item.ease_factor
            * config.easy_bonus
            * config.interval_multiplier
        )
        ease_factor += EASE_BONUS_EASY

    capped_days = min(new_days, config.max_interval)
    return _result(
        item,
        now,
        timedelta(days=capped_days),
        learning_state=_maturity(capped_days),
        ease_factor=ease_factor,
        interval=capped_days * MINUTES_PER_DAY,
        repetitions=item.repetitions + 1,
    )


def schedule(
    item: Item, rating: Rating, config: SchedulerConfig, now: datetime
) -> SchedulingResult:
    """
    Compute the item's next state and due time for ``rating``.

    New and learning items climb the learning-step ladder; review and mature
    items have their interval multiplied. The returned item is a new instance
    with ``next_review`` and ``updated_at`` set; the input is untouched.

    Raises:
        TypeError: If ``rating`` is not a Rating member.
    """
    if not isinstance(rating, Rating):
        raise TypeError(
            f"rating must be a Rating member, got {rating!r} ({type(rating).__name__})."
        )
    now = ensure_utc(now)

    if item.learning_state.is_stepping:
        result = _schedule_stepping(item, rating, config, now)
    else:
        result = _schedule_review(item, rating, config, now)

    logger.debug(
        f"Scheduled item {item.id}: {item.learning_state.value} -> "
        f"{result.item.learning_state.value} on {rating.label}, "
        f"next review {result.next_review.isoformat()}"
    )
    return result


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def format_interval(delay: timedelta) -> str:
    """
    Format a delay compactly for rating buttons: ``<1m``, ``5m``, ``3h``,
    ``4d``, ``2mo`` or ``1.5y``.
    """
    minutes = delay.total_seconds() / 60
    if minutes < 1:
        return "<1m"
    if minutes < 60:
        return f"{round_half_up(minutes)}m"
    if minutes < MINUTES_PER_DAY:
        return f"{round_half_up(minutes / 60)}h"
    days = minutes / MINUTES_PER_DAY
    if days < DAYS_PER_MONTH:
        return f"{round_half_up(days)}d"
    if days < DAYS_PER_YEAR:
        return f"{round_half_up(days / DAYS_PER_MONTH)}mo"
    return f"{days / DAYS_PER_YEAR:.1f}y"


def preview_intervals(
    item: Item, config: SchedulerConfig, now: datetime
) -> Dict[Rating, str]:
    """
    Show what each rating would do to ``item`` without changing it.

    Returns:
        Mapping of every Rating to the formatted delay until the next review.
    """
    now = ensure_utc(now)
    return {
        rating: format_interval(schedule(item, rating, config, now).next_review - now)
        for rating in Rating
    }


class StepLadderScheduler(BaseScheduler):
    """
    Learning-step ladder followed by ease-factor interval growth.

    Holds a SchedulerConfig and delegates to ``schedule``.
    """

    def __init__(self, config: Optional[SchedulerConfig] = None):
        if config is None:
            config = SchedulerConfig()
        self.config = config

    def compute_next_state(
        self, item: Item, rating: Rating, now: datetime
    ) -> SchedulingResult:
        return schedule(item, rating, self.config, now)

    def preview(self, item: Item, now: datetime) -> Dict[Rating, str]:
        return preview_intervals(item, self.config, now)
