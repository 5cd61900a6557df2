"""cardcadence - step-ladder spaced repetition scheduling with cloze support."""

from .models import (
    CardType,
    Item,
    LearningState,
    Rating,
    ReviewEvent,
    Scheduled,
    Stepping,
    StudyQueueEntry,
    DailyStats,
    StudySessionStats,
)
from .config import SchedulerConfig
from .scheduler import StepLadderScheduler, format_interval, schedule
from .queue_builder import build_study_queue
from .db import ItemDatabase

__all__ = [
    "CardType",
    "Item",
    "LearningState",
    "Rating",
    "ReviewEvent",
    "Scheduled",
    "Stepping",
    "StudyQueueEntry",
    "DailyStats",
    "StudySessionStats",
    "SchedulerConfig",
    "StepLadderScheduler",
    "format_interval",
    "schedule",
    "build_study_queue",
    "ItemDatabase",
]
